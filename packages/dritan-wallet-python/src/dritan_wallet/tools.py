"""
LangChain Tool implementations for the Dritan Agent Wallet

Async @tool functions with Pydantic v2 input schemas. Every tool returns a
JSON string; failures are rendered with ``DritanWalletError.to_dict()`` so
the agent always gets an error code and a next step.
"""

import json
import logging
from typing import Any, Optional, Union

from dotenv import load_dotenv
from langchain.tools import tool
from pydantic import BaseModel, Field

from .types import DritanWalletError
from .wallet import AgentWallet

logger = logging.getLogger("dritan_wallet.tools")


# ============================================================================
# Input Schemas (Pydantic v2)
# ============================================================================

class WalletPathInput(BaseModel):
    """Input schema for tools that act on a local wallet file."""

    wallet_path: str = Field(description="Path to the local Solana keypair JSON file")


class CreateWalletInput(BaseModel):
    """Input schema for local wallet creation."""

    name: str = Field(default="agent-wallet", description="Wallet file name (without .json)")
    wallet_dir: Optional[str] = Field(
        default=None, description="Directory for the keypair file (defaults to the wallet dir)"
    )


class BalanceInput(BaseModel):
    """Input schema for wallet balance check."""

    wallet_path: str = Field(description="Path to the local Solana keypair JSON file")
    rpc_url: Optional[str] = Field(default=None, description="Solana RPC URL override")


class TransferInput(BaseModel):
    """Input schema for sending SOL."""

    wallet_path: str = Field(description="Path to the sending wallet's keypair file")
    to_address: str = Field(description="Recipient Solana address (base58)")
    lamports: Optional[int] = Field(default=None, description="Amount in lamports")
    sol: Optional[str] = Field(default=None, description="Amount in SOL (e.g. '0.05')")


class SetApiKeyInput(BaseModel):
    """Input schema for setting the Dritan API key."""

    api_key: str = Field(description="Dritan API key to use for this session")


class QuoteInput(BaseModel):
    """Input schema for an x402 API key quote."""

    duration_minutes: int = Field(description="How long the API key should stay valid, in minutes")
    name: Optional[str] = Field(default=None, description="Label for the API key")
    scopes: Optional[list[str]] = Field(default=None, description="Requested API scopes")
    payer_address: Optional[str] = Field(
        default=None, description="Lock the quote to this payer address"
    )
    wallet_path: Optional[str] = Field(
        default=None, description="Lock the quote to the address of this local wallet"
    )


class PayQuoteInput(BaseModel):
    """Input schema for paying an x402 quote."""

    quote_id: str = Field(description="quoteId returned by x402_create_api_key_quote")
    wallet_path: str = Field(description="Path to the paying wallet's keypair file")


class ClaimInput(BaseModel):
    """Input schema for claiming an API key with a payment."""

    quote_id: str = Field(description="quoteId that was paid")
    payment_signature: str = Field(description="Signature of the confirmed payment transaction")
    payer_address: Optional[str] = Field(default=None, description="Address that paid")
    name: Optional[str] = Field(default=None, description="Label for the API key")
    scopes: Optional[list[str]] = Field(default=None, description="Requested API scopes")


class SwapInput(BaseModel):
    """Swap parameters shared by build tools."""

    input_mint: str = Field(description="Mint address of the token to sell")
    output_mint: str = Field(description="Mint address of the token to buy")
    amount: Union[int, str] = Field(description="Amount of the input token in base units")
    slippage_bps: Optional[int] = Field(default=None, description="Max slippage in bps (1-5000)")
    swap_type: Optional[str] = Field(default=None, description="Swap type, e.g. 'buy' or 'sell'")
    fee_wallet: Optional[str] = Field(default=None, description="Wallet receiving platform fees")
    fee_bps: Optional[int] = Field(default=None, description="Platform fee in bps (0-10000)")
    fee_percent: Optional[float] = Field(default=None, description="Platform fee percent (0-100)")


class SwapBuildInput(SwapInput):
    """Input schema for building an unsigned swap."""

    user_public_key: Optional[str] = Field(
        default=None, description="Public key the swap is built for"
    )
    wallet_path: Optional[str] = Field(
        default=None, description="Use the address of this local wallet as the user public key"
    )


class SwapSignInput(BaseModel):
    """Input schema for signing and broadcasting a built swap."""

    wallet_path: str = Field(description="Path to the signing wallet's keypair file")
    transaction_base64: str = Field(description="transactionBase64 returned by swap_build")


class SwapBuildSignInput(SwapInput):
    """Input schema for one-shot build, sign and broadcast."""

    wallet_path: str = Field(description="Path to the signing wallet's keypair file")


# ============================================================================
# Global wallet instance (set via create_wallet_tools)
# ============================================================================

_wallet: Optional[AgentWallet] = None


def _get_wallet() -> AgentWallet:
    """Get the configured wallet instance."""
    if _wallet is None:
        raise RuntimeError("Wallet not configured. Call create_wallet_tools first.")
    return _wallet


def _ok(payload: Any) -> str:
    return json.dumps(payload, indent=2, default=str)


def _error(e: DritanWalletError) -> str:
    logger.info(f"Tool failed with {e.code.name}: {e.message}")
    return json.dumps(e.to_dict(), indent=2, default=str)


def _swap_options(
    slippage_bps: Optional[int],
    swap_type: Optional[str],
    fee_wallet: Optional[str],
    fee_bps: Optional[int],
    fee_percent: Optional[float],
) -> dict[str, Any]:
    return {
        "slippage_bps": slippage_bps,
        "swap_type": swap_type,
        "fee_wallet": fee_wallet,
        "fee_bps": fee_bps,
        "fee_percent": fee_percent,
    }


def _amount(value: Union[int, str]) -> int | str:
    if isinstance(value, str) and value.isdigit():
        return int(value)
    return value


# ============================================================================
# Environment
# ============================================================================

@tool("system_check_prereqs")
def system_check_prereqs() -> str:
    """Check that solana-keygen is installed and an API key is available.

    Run this first. If anything is missing the result says what to do next.
    """
    try:
        return _ok(_get_wallet().check_prereqs())
    except DritanWalletError as e:
        return _error(e)


@tool("dritan_health")
async def dritan_health() -> str:
    """Check that the Dritan API is reachable."""
    try:
        return _ok(await _get_wallet().health())
    except DritanWalletError as e:
        return _error(e)


# ============================================================================
# Local wallet
# ============================================================================

@tool("wallet_create_local", args_schema=CreateWalletInput)
def wallet_create_local(name: str = "agent-wallet", wallet_dir: Optional[str] = None) -> str:
    """Create a new local Solana keypair file with solana-keygen.

    Never overwrites an existing wallet.
    """
    try:
        created = _get_wallet().create_local_wallet(name, wallet_dir)
        return _ok(created.to_dict())
    except DritanWalletError as e:
        return _error(e)


@tool("wallet_get_address", args_schema=WalletPathInput)
def wallet_get_address(wallet_path: str) -> str:
    """Get the public address of a local wallet."""
    try:
        return _ok(_get_wallet().get_address(wallet_path))
    except DritanWalletError as e:
        return _error(e)


@tool("wallet_get_balance", args_schema=BalanceInput)
async def wallet_get_balance(wallet_path: str, rpc_url: Optional[str] = None) -> str:
    """Get the SOL balance of a local wallet."""
    try:
        return _ok(await _get_wallet().get_balance(wallet_path, rpc_url))
    except DritanWalletError as e:
        return _error(e)


@tool("wallet_transfer_sol", args_schema=TransferInput)
async def wallet_transfer_sol(
    wallet_path: str,
    to_address: str,
    lamports: Optional[int] = None,
    sol: Optional[str] = None,
) -> str:
    """Send SOL from a local wallet and wait for confirmation.

    Give exactly one of lamports or sol.
    """
    try:
        result = await _get_wallet().transfer_sol(
            wallet_path, to_address, lamports=lamports, sol=sol
        )
        return _ok(result.to_dict())
    except DritanWalletError as e:
        return _error(e)


# ============================================================================
# Auth
# ============================================================================

@tool("auth_status")
def auth_status() -> str:
    """Show which API key is active, where it came from, and what it shadows."""
    try:
        return _ok(_get_wallet().auth_status())
    except DritanWalletError as e:
        return _error(e)


@tool("auth_set_api_key", args_schema=SetApiKeyInput)
def auth_set_api_key(api_key: str) -> str:
    """Use this API key for the session and persist it for later sessions."""
    try:
        wallet = _get_wallet()
        wallet.set_api_key(api_key)
        return _ok(wallet.auth_status())
    except DritanWalletError as e:
        return _error(e)


@tool("auth_clear_api_key")
def auth_clear_api_key() -> str:
    """Forget the active API key, including its persisted copy."""
    try:
        return _ok(_get_wallet().clear_api_key().to_dict())
    except DritanWalletError as e:
        return _error(e)


# ============================================================================
# x402 API key issuance
# ============================================================================

@tool("x402_get_pricing")
async def x402_get_pricing() -> str:
    """Get the price of a Dritan API key and the address that receives payment."""
    try:
        pricing = await _get_wallet().get_pricing()
        return _ok(pricing.raw or {"receiver": pricing.receiver})
    except DritanWalletError as e:
        return _error(e)


@tool("x402_create_api_key_quote", args_schema=QuoteInput)
async def x402_create_api_key_quote(
    duration_minutes: int,
    name: Optional[str] = None,
    scopes: Optional[list[str]] = None,
    payer_address: Optional[str] = None,
    wallet_path: Optional[str] = None,
) -> str:
    """Request a quote for a time-limited API key.

    The result says how many lamports to send and to which address.
    """
    try:
        quote = await _get_wallet().request_quote(
            duration_minutes,
            name=name,
            scopes=scopes,
            payer_address=payer_address,
            wallet_path=wallet_path,
        )
        return _ok(
            {
                "quoteId": quote.quote_id,
                "amountLamports": quote.amount_lamports,
                "receiver": quote.receiver,
                "durationMinutes": quote.duration_minutes,
                "payer": quote.payer,
                "expiresAt": quote.expires_at,
                "nextStep": "Pay with x402_pay_quote, then claim with x402_claim_api_key.",
            }
        )
    except DritanWalletError as e:
        return _error(e)


@tool("x402_pay_quote", args_schema=PayQuoteInput)
async def x402_pay_quote(quote_id: str, wallet_path: str) -> str:
    """Pay a quote from a local wallet and wait for the payment to confirm."""
    try:
        receipt = await _get_wallet().pay_quote(quote_id, wallet_path)
        return _ok(receipt.to_dict())
    except DritanWalletError as e:
        return _error(e)


@tool("x402_claim_api_key", args_schema=ClaimInput)
async def x402_claim_api_key(
    quote_id: str,
    payment_signature: str,
    payer_address: Optional[str] = None,
    name: Optional[str] = None,
    scopes: Optional[list[str]] = None,
) -> str:
    """Claim the API key for a paid quote and make it the active key."""
    try:
        wallet = _get_wallet()
        issued = await wallet.claim_key(
            quote_id, payment_signature, payer_address=payer_address, name=name, scopes=scopes
        )
        return _ok(
            {
                "quoteId": issued.quote_id,
                "paymentSignature": issued.payment_signature,
                "apiKey": wallet.get_active_credential().masked(),
                "expiresAt": issued.expires_at,
                "activated": True,
            }
        )
    except DritanWalletError as e:
        return _error(e)


# ============================================================================
# Swaps
# ============================================================================

@tool("swap_build", args_schema=SwapBuildInput)
async def swap_build(
    input_mint: str,
    output_mint: str,
    amount: Union[int, str],
    user_public_key: Optional[str] = None,
    wallet_path: Optional[str] = None,
    slippage_bps: Optional[int] = None,
    swap_type: Optional[str] = None,
    fee_wallet: Optional[str] = None,
    fee_bps: Optional[int] = None,
    fee_percent: Optional[float] = None,
) -> str:
    """Build an unsigned swap transaction through the Dritan API."""
    try:
        built = await _get_wallet().build_swap(
            input_mint,
            output_mint,
            _amount(amount),
            wallet_path=wallet_path,
            user_public_key=user_public_key,
            **_swap_options(slippage_bps, swap_type, fee_wallet, fee_bps, fee_percent),
        )
        return _ok(
            {
                "transactionBase64": built.transaction_base64,
                "fees": built.fees,
                "quote": built.quote,
            }
        )
    except DritanWalletError as e:
        return _error(e)


@tool("swap_sign_and_broadcast", args_schema=SwapSignInput)
async def swap_sign_and_broadcast(wallet_path: str, transaction_base64: str) -> str:
    """Sign a built swap with a local wallet and broadcast it."""
    try:
        result = await _get_wallet().sign_and_broadcast(wallet_path, transaction_base64)
        return _ok(result.to_dict())
    except DritanWalletError as e:
        return _error(e)


@tool("swap_build_sign_and_broadcast", args_schema=SwapBuildSignInput)
async def swap_build_sign_and_broadcast(
    wallet_path: str,
    input_mint: str,
    output_mint: str,
    amount: Union[int, str],
    slippage_bps: Optional[int] = None,
    swap_type: Optional[str] = None,
    fee_wallet: Optional[str] = None,
    fee_bps: Optional[int] = None,
    fee_percent: Optional[float] = None,
) -> str:
    """Build, sign and broadcast a swap for a local wallet in one step."""
    try:
        result = await _get_wallet().build_sign_and_broadcast(
            wallet_path,
            input_mint,
            output_mint,
            _amount(amount),
            **_swap_options(slippage_bps, swap_type, fee_wallet, fee_bps, fee_percent),
        )
        return _ok(result.to_dict())
    except DritanWalletError as e:
        return _error(e)


# ============================================================================
# Factory Function
# ============================================================================

def create_wallet_tools(wallet: Optional[AgentWallet] = None) -> list:
    """
    Create a list of LangChain tools for wallet operations.

    This function configures the global wallet instance and returns
    the tools ready for use with a LangChain agent.

    Args:
        wallet: Configured AgentWallet; built from the environment (and a
            ``.env`` file, if present) when omitted

    Returns:
        List of LangChain tools
    """
    global _wallet

    if wallet is None:
        load_dotenv()
        wallet = AgentWallet.from_env()
    _wallet = wallet

    return [
        system_check_prereqs,
        dritan_health,
        wallet_create_local,
        wallet_get_address,
        wallet_get_balance,
        wallet_transfer_sol,
        auth_status,
        auth_set_api_key,
        auth_clear_api_key,
        x402_get_pricing,
        x402_create_api_key_quote,
        x402_pay_quote,
        x402_claim_api_key,
        swap_build,
        swap_sign_and_broadcast,
        swap_build_sign_and_broadcast,
    ]
