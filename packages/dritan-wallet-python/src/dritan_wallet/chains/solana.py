"""Solana chain adapter."""

import asyncio
import base64
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any

import httpx

from ..types import Balance, DritanWalletError, ErrorCode, TransientError, TxHash

logger = logging.getLogger("dritan_wallet.chains.solana")

LAMPORTS_PER_SOL = 1_000_000_000
_BASE58_ADDRESS = re.compile(r"^[1-9A-HJ-NP-Za-km-z]{32,44}$")


class RpcError(DritanWalletError):
    """JSON-RPC error response from the node."""

    code = ErrorCode.API_ERROR

    def __init__(self, message: str, *, method: str, rpc_code: int | None = None, data: Any = None):
        super().__init__(
            message,
            next_step="Inspect the RPC error in details.",
            details={"method": method, "rpcCode": rpc_code, "data": data},
        )
        self.method = method
        self.rpc_code = rpc_code
        self.data = data


@dataclass
class SolanaChainConfig:
    """Solana chain configuration."""

    name: str
    rpc_urls: list[str]
    commitment: str = "confirmed"
    explorer_url: str | None = None

    @classmethod
    def from_url(cls, rpc_url: str) -> "SolanaChainConfig":
        """Config for a single endpoint, reusing a known network's metadata if it matches."""
        for network in SolanaNetworks.values():
            if rpc_url in network.rpc_urls:
                return network
        return cls(name="Solana (custom RPC)", rpc_urls=[rpc_url])


# Pre-configured Solana networks
SolanaNetworks = {
    "MAINNET": SolanaChainConfig(
        name="Solana Mainnet",
        rpc_urls=["https://api.mainnet-beta.solana.com"],
        explorer_url="https://explorer.solana.com",
    ),
    "DEVNET": SolanaChainConfig(
        name="Solana Devnet",
        rpc_urls=["https://api.devnet.solana.com"],
        explorer_url="https://explorer.solana.com?cluster=devnet",
    ),
    "TESTNET": SolanaChainConfig(
        name="Solana Testnet",
        rpc_urls=["https://api.testnet.solana.com"],
        explorer_url="https://explorer.solana.com?cluster=testnet",
    ),
}


@dataclass
class LatestBlockhash:
    """Validity reference for a new transaction."""

    blockhash: str
    last_valid_block_height: int


@dataclass
class Confirmation:
    """Outcome of waiting for a transaction."""

    confirmed: bool
    slot: int | None = None
    err: Any = None  # Chain-reported failure
    expired: bool = False  # Blockhash expired before the transaction landed
    status: dict[str, Any] = field(default_factory=dict)

    @property
    def failed(self) -> bool:
        return self.err is not None


class SolanaAdapter:
    """
    Solana chain adapter.

    Example:
        >>> adapter = SolanaAdapter(SolanaNetworks["MAINNET"])
        >>>
        >>> # Get balance
        >>> balance = await adapter.get_balance("...")
        >>>
        >>> # Submit a signed transaction and wait for it
        >>> tx = await adapter.send_raw_transaction(signed_bytes)
        >>> confirmation = await adapter.wait_for_confirmation(tx.hash)
    """

    def __init__(
        self,
        config: SolanaChainConfig,
        *,
        timeout_secs: float = 30.0,
        confirm_timeout_secs: float = 60.0,
        poll_interval_secs: float = 2.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config
        self._current_rpc_index = 0
        self._timeout_secs = timeout_secs
        self._confirm_timeout_secs = confirm_timeout_secs
        self._poll_interval_secs = poll_interval_secs
        self._transport = transport

    @property
    def name(self) -> str:
        """Get network name."""
        return self._config.name

    @property
    def rpc_url(self) -> str:
        """Endpoint currently in use."""
        return self._config.rpc_urls[self._current_rpc_index]

    @property
    def symbol(self) -> str:
        """Get native currency symbol."""
        return "SOL"

    @property
    def decimals(self) -> int:
        """Get native currency decimals."""
        return 9

    async def get_balance(self, address: str) -> Balance:
        """Get SOL balance for an address."""
        result = await self._rpc_call(
            "getBalance",
            [address, {"commitment": self._config.commitment}],
        )

        raw_value = result["value"]
        return Balance(
            raw=str(raw_value),
            formatted=self._format_lamports(raw_value),
            symbol="SOL",
            decimals=9,
        )

    async def get_latest_blockhash(self) -> LatestBlockhash:
        """Get the latest blockhash and the last block height it is valid for."""
        result = await self._rpc_call(
            "getLatestBlockhash",
            [{"commitment": self._config.commitment}],
        )
        value = result["value"]
        return LatestBlockhash(
            blockhash=value["blockhash"],
            last_valid_block_height=int(value["lastValidBlockHeight"]),
        )

    async def get_block_height(self) -> int:
        result = await self._rpc_call(
            "getBlockHeight", [{"commitment": self._config.commitment}]
        )
        return int(result)

    async def send_raw_transaction(self, signed_tx: bytes) -> TxHash:
        """Broadcast a signed transaction."""
        tx_base64 = base64.b64encode(signed_tx).decode()

        result = await self._rpc_call(
            "sendTransaction",
            [tx_base64, {"encoding": "base64", "preflightCommitment": self._config.commitment}],
        )
        return TxHash(hash=result, explorer_url=self.get_explorer_tx_url(result))

    async def get_signature_status(self, signature: str) -> dict[str, Any] | None:
        result = await self._rpc_call("getSignatureStatuses", [[signature]])
        return result["value"][0]

    async def wait_for_confirmation(
        self,
        signature: str,
        last_valid_block_height: int | None = None,
        timeout_secs: float | None = None,
    ) -> Confirmation:
        """Poll until the transaction is confirmed, fails, expires, or the timeout passes."""
        timeout_secs = self._confirm_timeout_secs if timeout_secs is None else timeout_secs
        deadline = time.monotonic() + timeout_secs

        while True:
            try:
                status = await self.get_signature_status(signature)
            except TransientError as e:
                logger.warning(f"Status poll for {signature} failed: {e.message}")
                status = None

            if status:
                if status.get("err") is not None:
                    return Confirmation(
                        confirmed=False, slot=status.get("slot"), err=status["err"], status=status
                    )
                if status.get("confirmationStatus") in ("confirmed", "finalized"):
                    return Confirmation(confirmed=True, slot=status.get("slot"), status=status)

            if last_valid_block_height is not None:
                try:
                    height = await self.get_block_height()
                except TransientError:
                    height = None
                if height is not None and height > last_valid_block_height:
                    return Confirmation(confirmed=False, expired=True)

            if time.monotonic() >= deadline:
                return Confirmation(confirmed=False)

            await asyncio.sleep(self._poll_interval_secs)

    def is_valid_address(self, address: str) -> bool:
        """Check if an address is valid (base58)."""
        return bool(_BASE58_ADDRESS.match(address))

    def get_explorer_tx_url(self, signature: str) -> str | None:
        """Get explorer URL for a transaction."""
        if not self._config.explorer_url:
            return None
        return _explorer_url(self._config.explorer_url, f"tx/{signature}")

    def get_explorer_address_url(self, address: str) -> str | None:
        """Get explorer URL for an address."""
        if not self._config.explorer_url:
            return None
        return _explorer_url(self._config.explorer_url, f"address/{address}")

    async def _rpc_call(self, method: str, params: list[Any]) -> Any:
        """Make an RPC call with failover."""
        errors: list[str] = []

        async with httpx.AsyncClient(
            timeout=self._timeout_secs, transport=self._transport
        ) as client:
            for _ in range(len(self._config.rpc_urls)):
                rpc_url = self._config.rpc_urls[self._current_rpc_index]

                try:
                    response = await client.post(
                        rpc_url,
                        json={
                            "jsonrpc": "2.0",
                            "method": method,
                            "params": params,
                            "id": 1,
                        },
                    )
                    response.raise_for_status()
                    data = response.json()
                    if not isinstance(data, dict):
                        raise ValueError("response is not a JSON-RPC object")
                except (httpx.HTTPError, ValueError) as e:
                    errors.append(f"{rpc_url}: {e or type(e).__name__}")
                    logger.warning(f"RPC {method} failed on {rpc_url}: {e or type(e).__name__}")
                    self._current_rpc_index = (
                        self._current_rpc_index + 1
                    ) % len(self._config.rpc_urls)
                    continue

                if data.get("error"):
                    error = data["error"]
                    raise RpcError(
                        error.get("message", "RPC error"),
                        method=method,
                        rpc_code=error.get("code"),
                        data=error.get("data"),
                    )

                return data["result"]

        raise TransientError(
            f"All RPC endpoints failed for {method}: {', '.join(errors)}",
            details={"method": method, "rpcUrls": list(self._config.rpc_urls)},
        )

    def _format_lamports(self, lamports: int) -> str:
        """Format lamports as SOL."""
        return format_sol(lamports)


def format_sol(lamports: int) -> str:
    sol = lamports / LAMPORTS_PER_SOL
    return f"{sol:.9f}".rstrip("0").rstrip(".") + " SOL"


def _explorer_url(base: str, path: str) -> str:
    # Keep ?cluster=... after the path
    if "?" in base:
        root, query = base.split("?", 1)
        return f"{root}/{path}?{query}"
    return f"{base}/{path}"
