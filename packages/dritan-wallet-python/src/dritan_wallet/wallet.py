"""Main Agent Wallet class."""

import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import httpx

from .api import DritanClient
from .chains.solana import LAMPORTS_PER_SOL, SolanaAdapter, SolanaChainConfig
from .config import WalletSettings
from .credentials import ClearResult, CredentialResolver
from .keygen import KeyGenerator, SolanaKeygenCli
from .keypair import KeypairHandle, LocalWallet, create_local_wallet, load_keypair, to_wallet_path
from .signing import (
    TransferResult,
    build_sign_and_broadcast,
    normalize_lamports,
    sign_and_broadcast,
    sol_to_lamports,
    transfer_lamports,
    validate_swap_request,
)
from .storage import CredentialStore, FileSystemStore
from .types import (
    NEXT_STEPS,
    Credential,
    ErrorCode,
    InvalidAmountError,
    InvalidRequestError,
    IssuedKey,
    Pricing,
    Provenance,
    Quote,
    SwapBuildRequest,
    SwapBuildResult,
    SwapResult,
)
from .x402 import IssuanceProtocol, PaymentReceipt

logger = logging.getLogger("dritan_wallet.wallet")


class AgentWallet:
    """
    Agent Wallet.

    Ties together key custody, the credential resolver, the x402 issuance
    protocol and the signing pipeline for one agent session.

    Example:
        >>> wallet = AgentWallet.from_env()
        >>> created = wallet.create_local_wallet("agent-wallet")
        >>>
        >>> # No API key yet: buy one with SOL from the local wallet
        >>> quote = await wallet.request_quote(60, wallet_path=created.wallet_path)
        >>> receipt = await wallet.pay_quote(quote.quote_id, created.wallet_path)
        >>> await wallet.claim_key(quote.quote_id, receipt.signature)
        >>>
        >>> # The claimed key is used immediately
        >>> await wallet.build_sign_and_broadcast(created.wallet_path, SOL_MINT, USDC_MINT, 10_000_000)
    """

    def __init__(
        self,
        settings: WalletSettings | None = None,
        *,
        resolver: CredentialResolver | None = None,
        client: DritanClient | None = None,
        adapter: SolanaAdapter | None = None,
        store: CredentialStore | None = None,
        generator: KeyGenerator | None = None,
        environ: Mapping[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        rpc_transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._settings = settings or WalletSettings()
        self._resolver = resolver or CredentialResolver(
            store or FileSystemStore(self._settings.credential_path),
            api_key_env=self._settings.api_key_env,
            environ=environ,
        )
        self._generator = generator or SolanaKeygenCli(self._settings.keygen_binary)
        self._rpc_transport = rpc_transport
        self._client = client or DritanClient(
            self._settings.base_url,
            self._resolver,
            timeout_secs=self._settings.http_timeout_secs,
            transport=transport,
        )
        self._adapter = adapter or self._make_adapter(self._settings.rpc_url)
        self._issuance = IssuanceProtocol(
            self._client,
            self._resolver,
            self._adapter,
            confirm_timeout_secs=self._settings.confirm_timeout_secs,
        )
        logger.debug(
            f"Agent wallet: api={self._client.base_url} rpc={self._adapter.rpc_url} "
            f"wallets={self._settings.wallet_dir}"
        )

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None, **kwargs: Any) -> "AgentWallet":
        """Create a wallet configured from environment variables."""
        return cls(WalletSettings.from_env(environ), environ=environ, **kwargs)

    def _make_adapter(self, rpc_url: str) -> SolanaAdapter:
        return SolanaAdapter(
            SolanaChainConfig.from_url(rpc_url),
            timeout_secs=self._settings.http_timeout_secs,
            confirm_timeout_secs=self._settings.confirm_timeout_secs,
            poll_interval_secs=self._settings.confirm_poll_secs,
            transport=self._rpc_transport,
        )

    @property
    def settings(self) -> WalletSettings:
        return self._settings

    @property
    def resolver(self) -> CredentialResolver:
        return self._resolver

    @property
    def client(self) -> DritanClient:
        return self._client

    @property
    def adapter(self) -> SolanaAdapter:
        return self._adapter

    @property
    def issuance(self) -> IssuanceProtocol:
        return self._issuance

    # ============================================================================
    # Environment
    # ============================================================================

    def check_prereqs(self) -> dict[str, Any]:
        """Report whether the key generator and an API key are available."""
        keygen = self._generator.check()
        credential = self._resolver.get_active()
        api_key_check = {
            "ok": credential.is_set,
            "name": "DRITAN_API_KEY",
            "provenance": credential.provenance.value,
            "hint": "API key is configured."
            if credential.is_set
            else NEXT_STEPS[ErrorCode.UNAUTHORIZED],
        }
        if not keygen.ok:
            next_action = "Install Solana CLI using installHint, then retry wallet_create_local."
        elif not credential.is_set:
            next_action = NEXT_STEPS[ErrorCode.UNAUTHORIZED]
        else:
            next_action = "Environment ready."
        return {
            "ready": keygen.ok and credential.is_set,
            "checks": [keygen.to_dict(), api_key_check],
            "warnings": self._resolver.store_warnings,
            "nextAction": next_action,
        }

    async def health(self) -> dict[str, Any]:
        return await self._client.health()

    # ============================================================================
    # Key custody
    # ============================================================================

    def wallet_path(self, name: str, wallet_dir: str | Path | None = None) -> Path:
        return to_wallet_path(name, wallet_dir or self._settings.wallet_dir)

    def create_local_wallet(
        self, name: str = "agent-wallet", wallet_dir: str | Path | None = None
    ) -> LocalWallet:
        """Create ``<wallet_dir>/<name>.json``; fails if it already exists."""
        if not name:
            raise InvalidRequestError("Wallet name must not be empty")
        return create_local_wallet(self.wallet_path(name, wallet_dir), self._generator)

    def load(self, wallet_path: str | Path) -> KeypairHandle:
        return load_keypair(wallet_path)

    def get_address(self, wallet_path: str | Path) -> dict[str, str]:
        handle = load_keypair(wallet_path)
        return {"walletPath": str(handle.path), "address": handle.address}

    async def get_balance(
        self, wallet_path: str | Path, rpc_url: str | None = None
    ) -> dict[str, Any]:
        handle = load_keypair(wallet_path)
        adapter = self._make_adapter(rpc_url) if rpc_url else self._adapter
        balance = await adapter.get_balance(handle.address)
        return {
            "walletPath": str(handle.path),
            "address": handle.address,
            "rpcUrl": adapter.rpc_url,
            "lamports": balance.lamports,
            "sol": balance.lamports / LAMPORTS_PER_SOL,
        }

    async def transfer_sol(
        self,
        wallet_path: str | Path,
        to_address: str,
        *,
        lamports: Any = None,
        sol: Any = None,
    ) -> TransferResult:
        """Send SOL from a local wallet; give exactly one of ``lamports`` or ``sol``."""
        if (lamports is None) == (sol is None):
            raise InvalidAmountError("Give exactly one of lamports or sol")
        amount = normalize_lamports(lamports) if lamports is not None else sol_to_lamports(sol)
        handle = load_keypair(wallet_path)
        return await transfer_lamports(handle, to_address, amount, self._adapter)

    # ============================================================================
    # API credential
    # ============================================================================

    def auth_status(self) -> dict[str, Any]:
        return self._resolver.status()

    def get_active_credential(self) -> Credential:
        return self._resolver.get_active()

    def set_api_key(self, api_key: str) -> Credential:
        return self._resolver.set_active(api_key, Provenance.RUNTIME)

    def clear_api_key(self) -> ClearResult:
        return self._resolver.clear_active()

    # ============================================================================
    # x402 issuance
    # ============================================================================

    async def get_pricing(self) -> Pricing:
        return await self._issuance.get_pricing()

    async def request_quote(
        self,
        duration_minutes: int,
        name: str | None = None,
        scopes: list[str] | None = None,
        payer_address: str | None = None,
        wallet_path: str | Path | None = None,
    ) -> Quote:
        """Request a quote; the payer comes from ``payer_address`` or an explicit wallet."""
        if payer_address is None and wallet_path is not None:
            payer_address = load_keypair(wallet_path).address
        return await self._issuance.request_quote(
            duration_minutes, name=name, scopes=scopes, payer_address=payer_address
        )

    async def pay_quote(self, quote: Quote | str, wallet_path: str | Path) -> PaymentReceipt:
        if isinstance(quote, str):
            known = self._issuance.get_quote(quote)
            if known is None:
                raise InvalidRequestError(
                    f"Unknown quote {quote}",
                    next_step="Request a quote in this session with x402_create_api_key_quote.",
                )
            quote = known
        handle = load_keypair(wallet_path)
        return await self._issuance.pay_quote(quote, handle)

    async def claim_key(
        self,
        quote_id: str,
        payment_signature: str,
        payer_address: str | None = None,
        name: str | None = None,
        scopes: list[str] | None = None,
    ) -> IssuedKey:
        return await self._issuance.claim_key(
            quote_id, payment_signature, payer_address=payer_address, name=name, scopes=scopes
        )

    # ============================================================================
    # Swaps
    # ============================================================================

    async def build_swap(
        self,
        input_mint: str,
        output_mint: str,
        amount: int | str,
        *,
        wallet_path: str | Path | None = None,
        user_public_key: str | None = None,
        **options: Any,
    ) -> SwapBuildResult:
        """Build an unsigned swap for ``user_public_key`` or the wallet at ``wallet_path``."""
        if user_public_key is None and wallet_path is not None:
            user_public_key = load_keypair(wallet_path).address
        if not user_public_key:
            raise InvalidRequestError("Provide either userPublicKey or walletPath")
        request = validate_swap_request(
            SwapBuildRequest(
                user_public_key=user_public_key,
                input_mint=input_mint,
                output_mint=output_mint,
                amount=amount,
                **options,
            )
        )
        return await self._client.build_swap(request)

    async def sign_and_broadcast(
        self, wallet_path: str | Path, transaction_base64: str
    ) -> SwapResult:
        handle = load_keypair(wallet_path)
        return await sign_and_broadcast(handle, transaction_base64, self._client)

    async def build_sign_and_broadcast(
        self,
        wallet_path: str | Path,
        input_mint: str,
        output_mint: str,
        amount: int | str,
        **options: Any,
    ) -> SwapResult:
        handle = load_keypair(wallet_path)
        request = SwapBuildRequest(
            user_public_key=handle.address,
            input_mint=input_mint,
            output_mint=output_mint,
            amount=amount,
            **options,
        )
        return await build_sign_and_broadcast(handle, request, self._client)

    # ============================================================================
    # Utilities
    # ============================================================================

    def to_dict(self) -> dict[str, Any]:
        """Export wallet state (without secrets) for debugging."""
        credential = self._resolver.get_active()
        return {
            "baseUrl": self._settings.base_url,
            "rpcUrl": self._adapter.rpc_url,
            "walletDir": str(self._settings.wallet_dir),
            "credentialProvenance": credential.provenance.value,
            "apiKey": credential.masked(),
            "issuanceState": self._issuance.state.value,
        }
