"""Transaction signing pipeline.

Two shapes, both terminal (no retries here):

* direct SOL transfers, built, signed, submitted and confirmed locally;
* swap transactions built by the Dritan API, signed locally and handed back
  to the API for broadcast.
"""

import base64
import binascii
import logging
import re
from dataclasses import dataclass, replace
from decimal import Decimal, InvalidOperation
from typing import Any

from solders.hash import Hash
from solders.message import Message, to_bytes_versioned
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.system_program import TransferParams, transfer
from solders.transaction import Transaction, VersionedTransaction

from .api import DritanClient
from .chains.solana import LAMPORTS_PER_SOL, RpcError, SolanaAdapter, format_sol
from .keypair import KeypairHandle
from .types import (
    InvalidAmountError,
    InvalidFormatError,
    InvalidRequestError,
    SignerMismatchError,
    SwapBuildRequest,
    SwapResult,
    TransferRejectedError,
    TransientError,
)

logger = logging.getLogger("dritan_wallet.signing")

# Largest amount that survives a round trip through JSON numbers
MAX_SAFE_LAMPORTS = 2**53 - 1
BASE_FEE_LAMPORTS = 5000

_DIGITS = re.compile(r"^\d+$")


@dataclass
class TransferResult:
    """Confirmed SOL transfer."""

    signature: str
    from_address: str
    to_address: str
    lamports: int
    slot: int | None = None
    explorer_url: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "signature": self.signature,
            "from": self.from_address,
            "to": self.to_address,
            "lamports": self.lamports,
            "sol": self.lamports / LAMPORTS_PER_SOL,
            "slot": self.slot,
            "explorerUrl": self.explorer_url,
        }


# ============================================================================
# Amounts
# ============================================================================


def normalize_lamports(amount: Any) -> int:
    """Validate an amount of lamports: a positive whole number within the safe range."""
    if isinstance(amount, bool):
        raise InvalidAmountError(f"Amount must be a number of lamports, got {amount!r}")

    if isinstance(amount, int):
        value = amount
    elif isinstance(amount, str) and _DIGITS.match(amount.strip()):
        value = int(amount.strip())
    elif isinstance(amount, float) and amount.is_integer():
        value = int(amount)
    elif isinstance(amount, Decimal) and amount.is_finite() and amount == amount.to_integral_value():
        value = int(amount)
    else:
        raise InvalidAmountError(f"Amount must be a whole number of lamports, got {amount!r}")

    if value <= 0:
        raise InvalidAmountError(f"Amount must be positive, got {value}")
    if value > MAX_SAFE_LAMPORTS:
        raise InvalidAmountError(f"Amount {value} exceeds the maximum of {MAX_SAFE_LAMPORTS}")
    return value


def sol_to_lamports(sol: Any) -> int:
    """Convert a SOL amount (number or decimal string) to lamports."""
    if isinstance(sol, bool):
        raise InvalidAmountError(f"Amount must be a number of SOL, got {sol!r}")
    try:
        lamports = Decimal(str(sol)) * LAMPORTS_PER_SOL
    except InvalidOperation:
        raise InvalidAmountError(f"Amount must be a number of SOL, got {sol!r}") from None
    if not lamports.is_finite() or lamports != lamports.to_integral_value():
        raise InvalidAmountError(f"{sol} SOL is not a whole number of lamports")
    return normalize_lamports(int(lamports))


def _parse_pubkey(address: str, field_name: str) -> Pubkey:
    try:
        return Pubkey.from_string(address)
    except ValueError as e:
        raise InvalidRequestError(
            f"{field_name} is not a valid Solana address: {address!r}",
            details={field_name: address},
            cause=e,
        ) from e


# ============================================================================
# Direct transfers
# ============================================================================


def build_transfer(
    keypair: KeypairHandle, destination: Pubkey, lamports: int, blockhash: str
) -> Transaction:
    """Single System-program transfer, signed by ``keypair`` as fee payer."""
    instruction = transfer(
        TransferParams(from_pubkey=keypair.pubkey(), to_pubkey=destination, lamports=lamports)
    )
    message = Message.new_with_blockhash([instruction], keypair.pubkey(), Hash.from_string(blockhash))
    signature = keypair.sign_message(bytes(message))
    return Transaction.populate(message, [signature])


async def transfer_lamports(
    keypair: KeypairHandle,
    destination: str,
    lamports: Any,
    adapter: SolanaAdapter,
    confirm_timeout_secs: float | None = None,
) -> TransferResult:
    """Send ``lamports`` from ``keypair`` to ``destination`` and wait for confirmation.

    Raises:
        InvalidAmountError: before any network call, for a bad amount.
        TransferRejectedError: insufficient balance, node rejection, on-chain
            failure or an expired blockhash.
        TransientError: the node was unreachable, or the transaction was not
            confirmed in time (``details["signature"]`` says what to look up).
    """
    lamports = normalize_lamports(lamports)
    to_pubkey = _parse_pubkey(destination, "destination")
    if to_pubkey == keypair.pubkey():
        raise InvalidRequestError("Destination is the sending wallet itself")

    balance = await adapter.get_balance(keypair.address)
    required = lamports + BASE_FEE_LAMPORTS
    if balance.lamports < required:
        raise TransferRejectedError(
            f"Insufficient balance: {keypair.address} holds {balance.formatted}, "
            f"transfer needs {format_sol(required)} including fees",
            next_step=f"Fund {keypair.address} with at least {format_sol(required - balance.lamports)} "
            "and submit a new transfer.",
            details={
                "address": keypair.address,
                "balanceLamports": balance.lamports,
                "requiredLamports": required,
            },
        )

    latest = await adapter.get_latest_blockhash()
    tx = build_transfer(keypair, to_pubkey, lamports, latest.blockhash)
    signature = str(tx.signatures[0])

    try:
        sent = await adapter.send_raw_transaction(bytes(tx))
    except RpcError as e:
        raise TransferRejectedError(
            f"Transfer rejected by the node: {e.message}",
            details={"signature": signature, "rpc": e.details},
            cause=e,
        ) from e

    confirmation = await adapter.wait_for_confirmation(
        sent.hash, latest.last_valid_block_height, confirm_timeout_secs
    )
    if confirmation.failed:
        raise TransferRejectedError(
            f"Transfer {sent.hash} failed on chain: {confirmation.err}",
            details={"signature": sent.hash, "chainError": confirmation.err},
        )
    if confirmation.expired:
        raise TransferRejectedError(
            f"Blockhash expired before transfer {sent.hash} was confirmed",
            next_step="The transfer did not land; submit a new transfer.",
            details={"signature": sent.hash},
        )
    if not confirmation.confirmed:
        raise TransientError(
            f"Transfer {sent.hash} was not confirmed in time",
            next_step=(
                "Check the signature on an explorer before sending again; "
                "the transfer may still land."
            ),
            details={"signature": sent.hash, "explorerUrl": sent.explorer_url},
        )

    logger.info(
        f"Transferred {format_sol(lamports)} from {keypair.address} to {destination} "
        f"(tx={sent.hash}, slot={confirmation.slot})"
    )
    return TransferResult(
        signature=sent.hash,
        from_address=keypair.address,
        to_address=destination,
        lamports=lamports,
        slot=confirmation.slot,
        explorer_url=sent.explorer_url,
    )


# ============================================================================
# Swaps
# ============================================================================


def sign_transaction_base64(keypair: KeypairHandle, transaction_base64: str) -> str:
    """Sign a base64 versioned transaction in the keypair's signer slot."""
    try:
        raw = base64.b64decode(transaction_base64, validate=True)
    except (binascii.Error, ValueError) as e:
        raise InvalidRequestError("transactionBase64 is not valid base64", cause=e) from e

    try:
        tx = VersionedTransaction.from_bytes(raw)
    except Exception as e:
        raise InvalidFormatError(
            f"Cannot deserialize transaction: {e}",
            next_step="Pass the transactionBase64 returned by swap_build unchanged.",
            cause=e,
        ) from e

    message = tx.message
    required = message.header.num_required_signatures
    signers = list(message.account_keys)[:required]
    pubkey = keypair.pubkey()
    if pubkey not in signers:
        raise SignerMismatchError(
            f"Transaction expects signers {[str(s) for s in signers]}, "
            f"wallet is {keypair.address}",
            next_step="Build the transaction for this wallet, or sign with the expected wallet.",
            details={"expectedSigners": [str(s) for s in signers], "signer": keypair.address},
        )

    signatures = list(tx.signatures)
    signatures += [Signature.default()] * (required - len(signatures))
    signatures[signers.index(pubkey)] = keypair.sign_message(to_bytes_versioned(message))
    signed = VersionedTransaction.populate(message, signatures)
    return base64.b64encode(bytes(signed)).decode()


def validate_swap_request(request: SwapBuildRequest) -> SwapBuildRequest:
    amount = request.amount
    if isinstance(amount, str):
        if not amount.strip():
            raise InvalidAmountError("Swap amount must not be empty")
    else:
        normalize_lamports(amount)
    if not request.input_mint or not request.output_mint:
        raise InvalidRequestError("inputMint and outputMint are required")
    if request.slippage_bps is not None and not 1 <= request.slippage_bps <= 5000:
        raise InvalidRequestError("slippageBps must be between 1 and 5000")
    if request.fee_bps is not None and not 0 <= request.fee_bps <= 10_000:
        raise InvalidRequestError("feeBps must be between 0 and 10000")
    if request.fee_percent is not None and not 0 <= request.fee_percent <= 100:
        raise InvalidRequestError("feePercent must be between 0 and 100")
    return request


async def sign_and_broadcast(
    keypair: KeypairHandle, transaction_base64: str, client: DritanClient
) -> SwapResult:
    """Sign an already-built swap and hand it to the API for broadcast."""
    signed = sign_transaction_base64(keypair, transaction_base64)
    signature = await client.broadcast_swap(signed)
    logger.info(f"Broadcast swap {signature} signed by {keypair.address}")
    return SwapResult(signature=signature, signer=keypair.address)


async def build_sign_and_broadcast(
    keypair: KeypairHandle, request: SwapBuildRequest, client: DritanClient
) -> SwapResult:
    """Build a swap for ``keypair``, sign it and broadcast it."""
    request = validate_swap_request(replace(request, user_public_key=keypair.address))
    built = await client.build_swap(request)
    signed = sign_transaction_base64(keypair, built.transaction_base64)
    signature = await client.broadcast_swap(signed)
    logger.info(f"Broadcast swap {signature} signed by {keypair.address}")
    return SwapResult(
        signature=signature, signer=keypair.address, fees=built.fees, quote=built.quote
    )
