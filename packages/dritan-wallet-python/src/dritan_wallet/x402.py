"""Payment-gated API key issuance (x402-style quote -> pay -> claim).

Paying and claiming are separate calls on purpose. If the process dies after
the payment confirms, the caller replays only :meth:`IssuanceProtocol.claim_key`
with the signature it already has; nothing here pays twice or retries a claim
behind the caller's back.

The payment must be confirmed on chain before claiming. ``pay_quote`` only
returns after confirmation, but a caller replaying a claim from a recorded
signature is responsible for that ordering.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

from solders.pubkey import Pubkey
from solders.signature import Signature

from .api import DritanClient
from .chains.solana import SolanaAdapter
from .credentials import CredentialResolver
from .keypair import KeypairHandle
from .signing import transfer_lamports
from .types import (
    InvalidRequestError,
    IssuedKey,
    Pricing,
    Provenance,
    Quote,
    QuoteExpiredError,
    SignerMismatchError,
    mask_secret,
)

logger = logging.getLogger("dritan_wallet.x402")

# One month of minutes
MAX_DURATION_MINUTES = 30 * 24 * 60


class IssuanceState(Enum):
    """Issuance progress."""

    IDLE = "idle"
    PRICING_KNOWN = "pricing_known"
    QUOTE_REQUESTED = "quote_requested"
    QUOTE_OBTAINED = "quote_obtained"
    PAYMENT_SUBMITTED = "payment_submitted"
    KEY_CLAIMED = "key_claimed"


@dataclass
class PaymentReceipt:
    """A confirmed payment against a quote."""

    quote_id: str
    signature: str
    payer: str
    receiver: str
    lamports: int
    slot: int | None = None
    explorer_url: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "quoteId": self.quote_id,
            "paymentSignature": self.signature,
            "payer": self.payer,
            "receiver": self.receiver,
            "lamports": self.lamports,
            "slot": self.slot,
            "explorerUrl": self.explorer_url,
            "nextStep": "Call x402_claim_api_key with this quoteId and paymentSignature.",
        }


def validate_duration(
    duration_minutes: Any, minimum: int = 1, maximum: int = MAX_DURATION_MINUTES
) -> int:
    if isinstance(duration_minutes, bool) or not isinstance(duration_minutes, int):
        raise InvalidRequestError(
            f"durationMinutes must be a whole number of minutes, got {duration_minutes!r}"
        )
    if not minimum <= duration_minutes <= maximum:
        raise InvalidRequestError(
            f"durationMinutes must be between {minimum} and {maximum}, got {duration_minutes}"
        )
    return duration_minutes


def _validate_address(address: str, field_name: str) -> str:
    try:
        Pubkey.from_string(address)
    except ValueError as e:
        raise InvalidRequestError(
            f"{field_name} is not a valid Solana address: {address!r}", cause=e
        ) from e
    return address


class IssuanceProtocol:
    """
    Drives quote -> pay -> claim against the Dritan key issuer.

    Example:
        >>> protocol = IssuanceProtocol(client, resolver, adapter)
        >>> quote = await protocol.request_quote(60, payer_address=keypair.address)
        >>> receipt = await protocol.pay_quote(quote, keypair)
        >>> issued = await protocol.claim_key(quote.quote_id, receipt.signature)
    """

    def __init__(
        self,
        client: DritanClient,
        resolver: CredentialResolver,
        adapter: SolanaAdapter,
        confirm_timeout_secs: float | None = None,
    ) -> None:
        self._client = client
        self._resolver = resolver
        self._adapter = adapter
        self._confirm_timeout_secs = confirm_timeout_secs
        self._state = IssuanceState.IDLE
        self._pricing: Pricing | None = None
        self._quotes: dict[str, Quote] = {}
        self._payments: dict[str, PaymentReceipt] = {}
        self._claims: dict[tuple[str, str], IssuedKey] = {}

    @property
    def state(self) -> IssuanceState:
        return self._state

    @property
    def pricing(self) -> Pricing | None:
        return self._pricing

    def get_quote(self, quote_id: str) -> Quote | None:
        """A quote obtained earlier in this process."""
        return self._quotes.get(quote_id)

    def get_payment(self, quote_id: str) -> PaymentReceipt | None:
        return self._payments.get(quote_id)

    async def get_pricing(self) -> Pricing:
        """Public price list; no local state beyond remembering it."""
        pricing = await self._client.get_pricing()
        self._pricing = pricing
        if self._state == IssuanceState.IDLE:
            self._state = IssuanceState.PRICING_KNOWN
        return pricing

    async def request_quote(
        self,
        duration_minutes: int,
        name: str | None = None,
        scopes: list[str] | None = None,
        payer_address: str | None = None,
    ) -> Quote:
        """Ask the issuer for a quote; ``payer_address`` locks it to one payer."""
        minimum, maximum = 1, MAX_DURATION_MINUTES
        if self._pricing is not None:
            if self._pricing.min_minutes:
                minimum = max(minimum, self._pricing.min_minutes)
            if self._pricing.max_minutes:
                maximum = min(maximum, self._pricing.max_minutes)
        duration_minutes = validate_duration(duration_minutes, minimum, maximum)
        if payer_address is not None:
            _validate_address(payer_address, "payerAddress")

        previous = self._state
        self._state = IssuanceState.QUOTE_REQUESTED
        try:
            quote = await self._client.create_quote(
                duration_minutes, name=name, scopes=scopes, payer=payer_address
            )
        except Exception:
            self._state = previous
            raise

        if quote.payer is None and payer_address is not None:
            quote.payer = payer_address
        self._quotes[quote.quote_id] = quote
        self._state = IssuanceState.QUOTE_OBTAINED
        logger.info(
            f"Quote {quote.quote_id}: {quote.amount_lamports} lamports to {quote.receiver} "
            f"for {quote.duration_minutes} minutes"
        )
        return quote

    async def pay_quote(self, quote: Quote, keypair: KeypairHandle) -> PaymentReceipt:
        """Transfer the quoted amount to the quote's receiver and wait for confirmation."""
        if quote.is_expired():
            raise QuoteExpiredError(
                f"Quote {quote.quote_id} expired at {quote.expires_at.isoformat()}",
                details={"quoteId": quote.quote_id},
            )
        if quote.payer is not None and quote.payer != keypair.address:
            raise SignerMismatchError(
                f"Quote {quote.quote_id} is locked to payer {quote.payer}, "
                f"wallet is {keypair.address}",
                next_step="Pay with the wallet the quote is locked to, or request a new quote.",
                details={"quoteId": quote.quote_id, "payer": quote.payer, "signer": keypair.address},
            )

        transfer = await transfer_lamports(
            keypair,
            quote.receiver,
            quote.amount_lamports,
            self._adapter,
            self._confirm_timeout_secs,
        )
        receipt = PaymentReceipt(
            quote_id=quote.quote_id,
            signature=transfer.signature,
            payer=keypair.address,
            receiver=quote.receiver,
            lamports=transfer.lamports,
            slot=transfer.slot,
            explorer_url=transfer.explorer_url,
        )
        self._quotes.setdefault(quote.quote_id, quote)
        self._payments[quote.quote_id] = receipt
        self._state = IssuanceState.PAYMENT_SUBMITTED
        logger.info(f"Paid quote {quote.quote_id} (tx={receipt.signature})")
        return receipt

    async def claim_key(
        self,
        quote_id: str,
        payment_signature: str,
        payer_address: str | None = None,
        name: str | None = None,
        scopes: list[str] | None = None,
    ) -> IssuedKey:
        """Exchange a confirmed payment for an API key and activate it."""
        if not quote_id:
            raise InvalidRequestError("quoteId is required")
        try:
            Signature.from_string(payment_signature)
        except ValueError as e:
            raise InvalidRequestError(
                f"paymentSignature is not a valid transaction signature: {payment_signature!r}",
                cause=e,
            ) from e

        previous = self._claims.get((quote_id, payment_signature))
        if previous is not None:
            logger.info(f"Quote {quote_id} already claimed in this process; returning the same key")
            return previous

        quote = self._quotes.get(quote_id)
        receipt = self._payments.get(quote_id)
        if payer_address is None:
            if quote is not None and quote.payer is not None:
                payer_address = quote.payer
            elif receipt is not None and receipt.signature == payment_signature:
                payer_address = receipt.payer
        if payer_address is not None:
            _validate_address(payer_address, "payerAddress")
        if quote is not None:
            name = name if name is not None else quote.name
            scopes = scopes if scopes is not None else quote.scopes

        issued = await self._client.claim_key(
            quote_id, payment_signature, payer=payer_address, name=name, scopes=scopes
        )
        self._resolver.set_active(issued.api_key, Provenance.ISSUANCE)
        self._claims[(quote_id, payment_signature)] = issued
        self._state = IssuanceState.KEY_CLAIMED
        logger.info(f"Claimed API key {mask_secret(issued.api_key)} for quote {quote_id}")
        return issued
