"""Core type definitions for the Dritan wallet SDK."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Any


class Provenance(str, Enum):
    """Where the active API credential came from."""

    NONE = "none"
    ENVIRONMENT = "environment"  # DRITAN_API_KEY, never persisted
    RUNTIME = "runtime"  # explicitly set by the agent
    ISSUANCE = "issuance"  # claimed through the x402 protocol
    PERSISTED = "persisted"  # read back from the credential store


# Higher wins when two sources are available at the same time.
PRECEDENCE: dict[Provenance, int] = {
    Provenance.RUNTIME: 4,
    Provenance.ISSUANCE: 3,
    Provenance.PERSISTED: 2,
    Provenance.ENVIRONMENT: 1,
    Provenance.NONE: 0,
}


class ErrorCode(IntEnum):
    """Error codes for SDK operations."""

    UNAUTHORIZED = 1
    ALREADY_EXISTS = 2
    INVALID_FORMAT = 3
    TOOL_MISSING = 4
    KEYGEN_FAILED = 5
    QUOTE_EXPIRED = 6
    PAYMENT_UNVERIFIED = 7
    SIGNER_MISMATCH = 8
    TRANSFER_REJECTED = 9
    INVALID_AMOUNT = 10
    TRANSIENT = 11
    STORE_UNAVAILABLE = 12
    INVALID_REQUEST = 13
    API_ERROR = 14
    UNKNOWN = 99


NEXT_STEPS: dict[ErrorCode, str] = {
    ErrorCode.UNAUTHORIZED: (
        "No Dritan API key is active. Buy one with x402_get_pricing -> "
        "x402_create_api_key_quote -> x402_pay_quote -> x402_claim_api_key, "
        "or set an existing key with auth_set_api_key (or DRITAN_API_KEY)."
    ),
    ErrorCode.ALREADY_EXISTS: (
        "Pick a different wallet name, or delete the existing file yourself "
        "if you really mean to replace it."
    ),
    ErrorCode.INVALID_FORMAT: (
        "Point walletPath at a solana-keygen JSON key file (an array of 64 byte values)."
    ),
    ErrorCode.TOOL_MISSING: (
        "Install the Solana CLI using the install steps in details, then retry."
    ),
    ErrorCode.KEYGEN_FAILED: "Check the generator output in details and retry.",
    ErrorCode.QUOTE_EXPIRED: "Request a new quote; this one can no longer be claimed.",
    ErrorCode.PAYMENT_UNVERIFIED: (
        "Wait for the payment transaction to confirm, then retry the same claim "
        "with the same quoteId and paymentSignature. Do not pay again."
    ),
    ErrorCode.SIGNER_MISMATCH: "Sign with the wallet the transaction or quote expects.",
    ErrorCode.TRANSFER_REJECTED: (
        "Check the wallet balance and the chain error, fund the wallet if needed, "
        "then submit a new transfer."
    ),
    ErrorCode.INVALID_AMOUNT: "Pass a positive whole number of lamports.",
    ErrorCode.TRANSIENT: "Retry the same call unchanged.",
    ErrorCode.STORE_UNAVAILABLE: (
        "Check permissions on the credential path; the key stays active for this "
        "process but will not survive a restart."
    ),
    ErrorCode.INVALID_REQUEST: "Fix the offending argument and retry.",
    ErrorCode.API_ERROR: "Inspect the API response in details.",
    ErrorCode.UNKNOWN: "Inspect the error message.",
}


class DritanWalletError(Exception):
    """Base exception for the Dritan wallet SDK."""

    code: ErrorCode = ErrorCode.UNKNOWN

    def __init__(
        self,
        message: str,
        *,
        next_step: str | None = None,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.next_step = next_step or NEXT_STEPS[self.code]
        self.details = details or {}
        self.cause = cause

    def to_dict(self) -> dict[str, Any]:
        """Render for agent-facing output."""
        return {
            "error": self.code.name,
            "code": int(self.code),
            "message": self.message,
            "nextStep": self.next_step,
            "details": self.details,
        }


class UnauthorizedError(DritanWalletError):
    code = ErrorCode.UNAUTHORIZED


class AlreadyExistsError(DritanWalletError):
    code = ErrorCode.ALREADY_EXISTS


class InvalidFormatError(DritanWalletError):
    code = ErrorCode.INVALID_FORMAT


class ToolMissingError(DritanWalletError):
    code = ErrorCode.TOOL_MISSING


class KeygenFailedError(DritanWalletError):
    code = ErrorCode.KEYGEN_FAILED


class QuoteExpiredError(DritanWalletError):
    code = ErrorCode.QUOTE_EXPIRED


class PaymentUnverifiedError(DritanWalletError):
    code = ErrorCode.PAYMENT_UNVERIFIED


class SignerMismatchError(DritanWalletError):
    code = ErrorCode.SIGNER_MISMATCH


class TransferRejectedError(DritanWalletError):
    code = ErrorCode.TRANSFER_REJECTED


class InvalidAmountError(DritanWalletError):
    code = ErrorCode.INVALID_AMOUNT


class TransientError(DritanWalletError):
    code = ErrorCode.TRANSIENT


class StoreUnavailableError(DritanWalletError):
    code = ErrorCode.STORE_UNAVAILABLE


class InvalidRequestError(DritanWalletError):
    code = ErrorCode.INVALID_REQUEST


class ApiError(DritanWalletError):
    code = ErrorCode.API_ERROR


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def mask_secret(value: str) -> str:
    """Mask a secret for display, keeping a short prefix and suffix."""
    if len(value) <= 8:
        return "*" * len(value)
    return f"{value[:4]}…{value[-4:]}"


@dataclass
class Credential:
    """The active Dritan API credential."""

    api_key: str | None
    provenance: Provenance
    updated_at: datetime | None = None

    @property
    def is_set(self) -> bool:
        return self.api_key is not None and self.provenance != Provenance.NONE

    def masked(self) -> str | None:
        """Masked key for logs and status output."""
        return mask_secret(self.api_key) if self.api_key else None


NO_CREDENTIAL = Credential(api_key=None, provenance=Provenance.NONE)


@dataclass
class StoredCredential:
    """On-disk credential record ({apiKey, source, updatedAt})."""

    api_key: str
    source: Provenance
    updated_at: datetime

    def to_json(self) -> dict[str, str]:
        return {
            "apiKey": self.api_key,
            "source": self.source.value,
            "updatedAt": self.updated_at.isoformat(),
        }


@dataclass
class Pricing:
    """Current x402 price list for API keys."""

    receiver: str  # Base58 address that receives payments
    lamports_per_minute: int | None = None
    min_minutes: int | None = None
    max_minutes: int | None = None
    network: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass
class Quote:
    """A priced, time-bounded offer to issue an API key."""

    quote_id: str
    amount_lamports: int
    receiver: str
    duration_minutes: int
    payer: str | None = None  # Set when the quote is locked to one payer
    expires_at: datetime | None = None
    name: str | None = None
    scopes: list[str] | None = None
    raw: dict[str, Any] = field(default_factory=dict)

    def is_expired(self, now: datetime | None = None) -> bool:
        """Check the validity window (quotes without one never expire locally)."""
        if self.expires_at is None:
            return False
        return (now or utc_now()) >= self.expires_at


@dataclass
class IssuedKey:
    """Result of a successful claim."""

    api_key: str
    quote_id: str
    payment_signature: str
    expires_at: datetime | None = None
    name: str | None = None
    scopes: list[str] | None = None
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass
class Balance:
    """Balance information."""

    raw: str  # Raw balance in smallest unit
    formatted: str  # Human-readable balance with decimals
    symbol: str  # Currency/token symbol
    decimals: int  # Number of decimals

    def is_zero(self) -> bool:
        """Check if balance is zero."""
        return self.raw == "0" or not self.raw

    @property
    def lamports(self) -> int:
        return int(self.raw or 0)


@dataclass
class TxHash:
    """Transaction signature result."""

    hash: str  # Base58 transaction signature
    explorer_url: str | None = None  # Explorer URL (if available)


@dataclass
class InstallHint:
    """Platform-specific remediation for a missing binary."""

    platform: str
    install_steps: list[str]

    def to_dict(self) -> dict[str, Any]:
        return {"platform": self.platform, "installSteps": list(self.install_steps)}


@dataclass
class SwapBuildRequest:
    """Parameters for building an unsigned swap transaction."""

    user_public_key: str
    input_mint: str
    output_mint: str
    amount: int | str
    slippage_bps: int | None = None
    swap_type: str | None = None
    fee_wallet: str | None = None
    fee_bps: int | None = None
    fee_percent: float | None = None

    def to_json(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "userPublicKey": self.user_public_key,
            "inputMint": self.input_mint,
            "outputMint": self.output_mint,
            "amount": self.amount,
            "slippageBps": self.slippage_bps,
            "swapType": self.swap_type,
            "feeWallet": self.fee_wallet,
            "feeBps": self.fee_bps,
            "feePercent": self.fee_percent,
        }
        return {k: v for k, v in body.items() if v is not None}


@dataclass
class SwapBuildResult:
    """Unsigned swap transaction plus fee/quote metadata."""

    transaction_base64: str
    fees: Any = None
    quote: Any = None
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass
class SwapResult:
    """Broadcast swap."""

    signature: str
    signer: str
    fees: Any = None
    quote: Any = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"signature": self.signature, "signer": self.signer}
        if self.fees is not None:
            data["fees"] = self.fees
        if self.quote is not None:
            data["quote"] = self.quote
        return data
