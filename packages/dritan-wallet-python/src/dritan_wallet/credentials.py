"""Resolution of the active Dritan API credential.

Sources, highest precedence first once set: an explicit runtime set, a key
claimed through x402, the persisted store, the environment. On a cold cache
the persisted store is consulted before the environment, and a key taken from
the environment is never written to the store.
"""

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from .config import API_KEY_ENV
from .storage import CredentialStore
from .types import (
    NEXT_STEPS,
    NO_CREDENTIAL,
    PRECEDENCE,
    Credential,
    ErrorCode,
    InvalidRequestError,
    Provenance,
    StoredCredential,
    StoreUnavailableError,
    UnauthorizedError,
    mask_secret,
    utc_now,
)

logger = logging.getLogger("dritan_wallet.credentials")

# Provenances a caller may activate explicitly
SETTABLE = (Provenance.RUNTIME, Provenance.ISSUANCE)

# Cold-cache lookup order
FALLBACK_ORDER = tuple(
    sorted((Provenance.PERSISTED, Provenance.ENVIRONMENT), key=PRECEDENCE.get, reverse=True)
)


@dataclass
class ClearResult:
    """Outcome of :meth:`CredentialResolver.clear_active`."""

    cleared: bool  # an in-memory key was dropped
    removed_from_store: bool
    env_fallback: bool  # the environment still provides a key
    next_provenance: Provenance  # what the next resolution will yield
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "cleared": self.cleared,
            "removedFromStore": self.removed_from_store,
            "envFallback": self.env_fallback,
            "nextProvenance": self.next_provenance.value,
            "warnings": list(self.warnings),
        }
        if self.env_fallback:
            data["note"] = (
                "An environment API key is still set and will be used on the next "
                "request. Unset it in the host environment to fully sign out."
            )
        return data


class CredentialResolver:
    """
    Holds the process-wide credential cache.

    Example:
        >>> resolver = CredentialResolver(FileSystemStore(path))
        >>> resolver.get_active().provenance
        <Provenance.ENVIRONMENT: 'environment'>
        >>> resolver.set_active("dk_live_...", Provenance.RUNTIME)
        >>> resolver.require_active().api_key
        'dk_live_...'
    """

    def __init__(
        self,
        store: CredentialStore,
        api_key_env: str = API_KEY_ENV,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self._store = store
        self._api_key_env = api_key_env
        self._environ = environ
        self._cached: Credential | None = None
        self._store_warnings: list[str] = []

    @property
    def store(self) -> CredentialStore:
        return self._store

    @property
    def api_key_env(self) -> str:
        return self._api_key_env

    @property
    def store_warnings(self) -> list[str]:
        """Persistence failures since the last successful write."""
        return list(self._store_warnings)

    # ========================================================================
    # Resolution
    # ========================================================================

    def get_active(self) -> Credential:
        """Return the active credential; provenance is ``none`` if nothing resolves."""
        cached = self._cached
        if cached is not None:
            return cached

        resolved = self._resolve_fallback()
        if resolved.is_set:
            self._cached = resolved
            logger.info(
                f"Resolved API key {resolved.masked()} from {resolved.provenance.value}"
            )
        return resolved

    def require_active(self) -> Credential:
        """Like :meth:`get_active` but raise when no key is available."""
        credential = self.get_active()
        if not credential.is_set:
            raise UnauthorizedError(
                "No active Dritan API key (checked memory, "
                f"{self._store.location} and ${self._api_key_env})",
                details={
                    "credentialStore": self._store.location,
                    "environmentVariable": self._api_key_env,
                },
            )
        return credential

    def _environment_value(self) -> str | None:
        environ = os.environ if self._environ is None else self._environ
        value = (environ.get(self._api_key_env) or "").strip()
        return value or None

    def _read_source(self, source: Provenance) -> Credential | None:
        if source == Provenance.PERSISTED:
            stored = self._store.read()
            if stored is None:
                return None
            return Credential(stored.api_key, Provenance.PERSISTED, stored.updated_at)
        if source == Provenance.ENVIRONMENT:
            value = self._environment_value()
            if value is None:
                return None
            return Credential(value, Provenance.ENVIRONMENT, None)
        return None

    def _resolve_fallback(self) -> Credential:
        for source in FALLBACK_ORDER:
            credential = self._read_source(source)
            if credential is not None:
                return credential
        return NO_CREDENTIAL

    # ========================================================================
    # Mutation
    # ========================================================================

    def set_active(self, value: str, provenance: Provenance = Provenance.RUNTIME) -> Credential:
        """Activate ``value`` immediately and write it through to the store.

        Last writer wins. A store failure is logged and kept as a status
        warning; the key stays active for this process either way.
        """
        provenance = Provenance(provenance)
        if provenance not in SETTABLE:
            raise InvalidRequestError(
                f"Cannot set a credential with provenance '{provenance.value}'",
                next_step="Use provenance 'runtime' or 'issuance'.",
            )
        if not isinstance(value, str) or not value.strip():
            raise InvalidRequestError("API key must be a non-empty string")

        credential = Credential(value.strip(), provenance, utc_now())
        self._cached = credential
        logger.info(f"Activated API key {credential.masked()} ({provenance.value})")

        try:
            self._store.write(
                StoredCredential(credential.api_key, provenance, credential.updated_at)
            )
        except StoreUnavailableError as e:
            logger.warning(f"API key active in memory only: {e.message}")
            self._store_warnings.append(e.message)
        else:
            self._store_warnings.clear()
        return credential

    def clear_active(self) -> ClearResult:
        """Drop the cached key and the durable copy. The environment is left alone."""
        cleared = self._cached is not None
        self._cached = None
        warnings: list[str] = []

        removed = False
        try:
            removed = self._store.remove()
        except StoreUnavailableError as e:
            logger.warning(f"Stored API key could not be removed: {e.message}")
            self._store_warnings.append(e.message)
            warnings.append(e.message)

        env_fallback = self._environment_value() is not None
        next_provenance = self._resolve_fallback().provenance
        if next_provenance == Provenance.PERSISTED:
            warnings.append(
                f"A persisted key at {self._store.location} will still be used on the "
                "next request."
            )
        logger.info(
            f"Cleared API key (store removed={removed}, next source={next_provenance.value})"
        )
        return ClearResult(
            cleared=cleared,
            removed_from_store=removed,
            env_fallback=env_fallback,
            next_provenance=next_provenance,
            warnings=warnings,
        )

    # ========================================================================
    # Status
    # ========================================================================

    def status(self) -> dict[str, Any]:
        """Summarise the credential sources for agent-facing output."""
        active = self.get_active()
        stored = self._store.read()
        env_value = self._environment_value()

        available = {
            Provenance.PERSISTED: stored.api_key if stored else None,
            Provenance.ENVIRONMENT: env_value,
        }
        shadowed = [
            source.value
            for source, value in available.items()
            if value is not None
            and active.is_set
            and source != active.provenance
            and value != active.api_key
            and PRECEDENCE[source] < PRECEDENCE[active.provenance]
        ]

        data: dict[str, Any] = {
            "authenticated": active.is_set,
            "provenance": active.provenance.value,
            "apiKey": active.masked(),
            "updatedAt": active.updated_at.isoformat() if active.updated_at else None,
            "store": {
                "location": self._store.location,
                "hasValue": stored is not None,
                "source": stored.source.value if stored else None,
            },
            "environment": {
                "variable": self._api_key_env,
                "hasValue": env_value is not None,
                "apiKey": mask_secret(env_value) if env_value else None,
            },
            "shadowed": shadowed,
            "warnings": self.store_warnings,
        }
        if not active.is_set:
            data["nextStep"] = NEXT_STEPS[ErrorCode.UNAUTHORIZED]
        return data
