"""HTTP client for the Dritan market/swap API and its x402 key issuer."""

import logging
from datetime import datetime, timezone
from typing import Any

import httpx

from .credentials import CredentialResolver
from .types import (
    ApiError,
    DritanWalletError,
    IssuedKey,
    PaymentUnverifiedError,
    Pricing,
    Quote,
    QuoteExpiredError,
    SignerMismatchError,
    SwapBuildRequest,
    SwapBuildResult,
    TransientError,
    UnauthorizedError,
)

logger = logging.getLogger("dritan_wallet.api")

X402_PRICING_PATH = "/v1/x402/pricing"
X402_QUOTE_PATH = "/v1/x402/api-keys/quote"
X402_CLAIM_PATH = "/v1/x402/api-keys"
SWAP_BUILD_PATH = "/swap/build"
SWAP_BROADCAST_PATH = "/swap/broadcast"
HEALTH_PATH = "/health"

_RETRYABLE_STATUS = {408, 425, 429}


def _first(data: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if data.get(key) is not None:
            return data[key]
    return None


def _parse_time(value: Any) -> datetime | None:
    """Parse ISO-8601 strings or epoch seconds / milliseconds."""
    if value is None:
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        seconds = value / 1000 if value > 1_000_000_000_000 else value
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    if isinstance(value, str):
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
    raise ValueError(f"Unrecognised timestamp: {value!r}")


def _parse_int(value: Any, field_name: str) -> int:
    if isinstance(value, bool):
        raise ValueError(f"{field_name} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    if isinstance(value, float) and value.is_integer():
        return int(value)
    raise ValueError(f"{field_name} must be an integer, got {value!r}")


def parse_pricing(data: dict[str, Any]) -> Pricing:
    receiver = _first(data, "receiver", "payTo", "recipient")
    if not receiver:
        raise ValueError("pricing response has no receiving address")
    per_minute = _first(data, "lamportsPerMinute", "priceLamportsPerMinute")
    min_minutes = _first(data, "minDurationMinutes", "minMinutes")
    max_minutes = _first(data, "maxDurationMinutes", "maxMinutes")
    return Pricing(
        receiver=receiver,
        lamports_per_minute=_parse_int(per_minute, "lamportsPerMinute")
        if per_minute is not None
        else None,
        min_minutes=_parse_int(min_minutes, "minDurationMinutes")
        if min_minutes is not None
        else None,
        max_minutes=_parse_int(max_minutes, "maxDurationMinutes")
        if max_minutes is not None
        else None,
        network=data.get("network"),
        raw=data,
    )


def parse_quote(data: dict[str, Any]) -> Quote:
    quote_id = _first(data, "quoteId", "id")
    receiver = _first(data, "receiver", "payTo", "recipient")
    amount = _first(data, "amountLamports", "amount")
    if not quote_id or not receiver or amount is None:
        raise ValueError("quote response must include quoteId, receiver and amountLamports")
    return Quote(
        quote_id=str(quote_id),
        amount_lamports=_parse_int(amount, "amountLamports"),
        receiver=receiver,
        duration_minutes=_parse_int(data.get("durationMinutes", 0), "durationMinutes"),
        payer=data.get("payer"),
        expires_at=_parse_time(data.get("expiresAt")),
        name=data.get("name"),
        scopes=data.get("scopes"),
        raw=data,
    )


def parse_issued_key(data: dict[str, Any], quote_id: str, signature: str) -> IssuedKey:
    api_key = _first(data, "apiKey", "key")
    if not isinstance(api_key, str) or not api_key:
        raise ValueError("claim response has no apiKey")
    return IssuedKey(
        api_key=api_key,
        quote_id=quote_id,
        payment_signature=signature,
        expires_at=_parse_time(data.get("expiresAt")),
        name=data.get("name"),
        scopes=data.get("scopes"),
        raw=data,
    )


class DritanClient:
    """
    Client for the Dritan API.

    Authenticated calls take the ``x-api-key`` header from the credential
    resolver at call time, so a key claimed or set mid-session is used by the
    very next request.

    Example:
        >>> client = DritanClient("https://us-east.dritan.dev", resolver)
        >>> pricing = await client.get_pricing()
        >>> quote = await client.create_quote(60)
    """

    def __init__(
        self,
        base_url: str,
        resolver: CredentialResolver,
        *,
        timeout_secs: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._resolver = resolver
        self._timeout_secs = timeout_secs
        self._transport = transport

    @property
    def base_url(self) -> str:
        return self._base_url

    # ========================================================================
    # Health
    # ========================================================================

    async def health(self) -> dict[str, Any]:
        """Probe ``/health``; never raises for HTTP status codes."""
        url = self._base_url + HEALTH_PATH
        headers = {}
        credential = self._resolver.get_active()
        if credential.is_set:
            headers["x-api-key"] = credential.api_key
        async with self._client() as client:
            try:
                response = await client.get(url, headers=headers)
            except httpx.TimeoutException as e:
                raise self._timeout(url, e) from e
            except httpx.TransportError as e:
                raise self._unreachable(url, e) from e
        return {
            "ok": response.is_success,
            "status": response.status_code,
            "url": url,
            "body": response.text or None,
        }

    # ========================================================================
    # x402 key issuance
    # ========================================================================

    async def get_pricing(self) -> Pricing:
        data = await self._request("GET", X402_PRICING_PATH)
        return self._parse(parse_pricing, data, X402_PRICING_PATH)

    async def create_quote(
        self,
        duration_minutes: int,
        name: str | None = None,
        scopes: list[str] | None = None,
        payer: str | None = None,
    ) -> Quote:
        body: dict[str, Any] = {"durationMinutes": duration_minutes}
        if name is not None:
            body["name"] = name
        if scopes is not None:
            body["scopes"] = scopes
        if payer is not None:
            body["payer"] = payer
        data = await self._request("POST", X402_QUOTE_PATH, json=body)
        quote = self._parse(parse_quote, data, X402_QUOTE_PATH)
        if not quote.duration_minutes:
            quote.duration_minutes = duration_minutes
        return quote

    async def claim_key(
        self,
        quote_id: str,
        payment_signature: str,
        payer: str | None = None,
        name: str | None = None,
        scopes: list[str] | None = None,
    ) -> IssuedKey:
        body: dict[str, Any] = {"quoteId": quote_id, "paymentSignature": payment_signature}
        if payer is not None:
            body["payer"] = payer
        if name is not None:
            body["name"] = name
        if scopes is not None:
            body["scopes"] = scopes
        data = await self._request("POST", X402_CLAIM_PATH, json=body)
        return self._parse(
            lambda d: parse_issued_key(d, quote_id, payment_signature), data, X402_CLAIM_PATH
        )

    # ========================================================================
    # Swaps
    # ========================================================================

    async def build_swap(self, request: SwapBuildRequest) -> SwapBuildResult:
        data = await self._request("POST", SWAP_BUILD_PATH, json=request.to_json(), auth=True)
        transaction = _first(data, "transactionBase64", "transaction", "swapTransaction")
        if not isinstance(transaction, str) or not transaction:
            raise ApiError(
                "Swap build response has no transaction",
                details={"path": SWAP_BUILD_PATH, "body": data},
            )
        return SwapBuildResult(
            transaction_base64=transaction,
            fees=data.get("fees"),
            quote=data.get("quote"),
            raw=data,
        )

    async def broadcast_swap(self, signed_transaction_base64: str) -> str:
        data = await self._request(
            "POST",
            SWAP_BROADCAST_PATH,
            json={"signedTransactionBase64": signed_transaction_base64},
            auth=True,
        )
        signature = data.get("signature")
        if not isinstance(signature, str) or not signature:
            raise ApiError(
                "Swap broadcast response has no signature",
                details={"path": SWAP_BROADCAST_PATH, "body": data},
            )
        return signature

    # ========================================================================
    # Plumbing
    # ========================================================================

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout_secs, transport=self._transport)

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        auth: bool = False,
    ) -> dict[str, Any]:
        url = self._base_url + path
        headers = {"accept": "application/json"}
        if auth:
            headers["x-api-key"] = self._resolver.require_active().api_key

        async with self._client() as client:
            try:
                response = await client.request(method, url, json=json, headers=headers)
            except httpx.TimeoutException as e:
                raise self._timeout(url, e) from e
            except httpx.TransportError as e:
                raise self._unreachable(url, e) from e

        if not response.is_success:
            raise _error_for_response(response, path, authenticated=auth)

        try:
            data = response.json()
        except ValueError as e:
            raise ApiError(
                f"{method} {path} returned a non-JSON body",
                details={"path": path, "status": response.status_code, "body": response.text},
                cause=e,
            ) from e
        if not isinstance(data, dict):
            raise ApiError(
                f"{method} {path} returned {type(data).__name__}, expected an object",
                details={"path": path, "body": data},
            )
        return data

    def _parse(self, parser, data: dict[str, Any], path: str):
        try:
            return parser(data)
        except (ValueError, TypeError) as e:
            raise ApiError(
                f"Unexpected response from {path}: {e}",
                details={"path": path, "body": data},
                cause=e,
            ) from e

    def _timeout(self, url: str, e: Exception) -> TransientError:
        return TransientError(
            f"Request to {url} timed out after {self._timeout_secs}s",
            details={"url": url},
            cause=e,
        )

    def _unreachable(self, url: str, e: Exception) -> TransientError:
        return TransientError(
            f"Request to {url} failed: {e or type(e).__name__}",
            details={"url": url},
            cause=e,
        )


def _error_body(response: httpx.Response) -> tuple[str, str | None, Any]:
    """Extract (message, error code, body) from an error response."""
    try:
        body: Any = response.json()
    except ValueError:
        body = response.text
    message = response.reason_phrase or f"HTTP {response.status_code}"
    code = None
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict):
            code = error.get("code")
            message = error.get("message") or message
        elif isinstance(error, str):
            message = error
        code = body.get("code") or code
        message = body.get("message") or message
    elif isinstance(body, str) and body:
        message = body
    return str(message), str(code) if code else None, body


def _error_for_response(
    response: httpx.Response, path: str, authenticated: bool
) -> DritanWalletError:
    status = response.status_code
    message, code, body = _error_body(response)
    details = {"path": path, "status": status, "errorCode": code, "body": body}
    upper_code = (code or "").upper()
    text = f"{path} failed ({status}): {message}"

    if status in (401, 403):
        if authenticated:
            return UnauthorizedError(f"API key rejected by {text}", details=details)
        return UnauthorizedError(text, details=details)
    if status == 410 or "EXPIRED" in upper_code:
        return QuoteExpiredError(text, details=details)
    if status == 409 and "PAYER" in upper_code:
        return SignerMismatchError(
            text,
            next_step="Claim with the payer address the quote was locked to.",
            details=details,
        )
    if status == 402 or "UNVERIFIED" in upper_code or "PAYMENT" in upper_code:
        return PaymentUnverifiedError(text, details=details)
    if status in _RETRYABLE_STATUS or status >= 500:
        return TransientError(text, details=details)
    return ApiError(text, details=details)
