"""Tests for active credential resolution."""

from datetime import datetime, timezone

import pytest

from dritan_wallet import (
    CredentialResolver,
    FileSystemStore,
    InvalidRequestError,
    MemoryStore,
    Provenance,
    StoreUnavailableError,
    UnauthorizedError,
)
from dritan_wallet.types import StoredCredential

PERSISTED_KEY = "dk_persisted_aaaaaaaa"
ENV_KEY = "dk_environment_bbbbbbbb"


def persisted(api_key: str = PERSISTED_KEY) -> StoredCredential:
    return StoredCredential(api_key, Provenance.RUNTIME, datetime(2026, 1, 1, tzinfo=timezone.utc))


class BrokenStore(MemoryStore):
    """Store whose writes and removals always fail."""

    def write(self, credential) -> None:
        raise StoreUnavailableError("disk full")

    def remove(self) -> bool:
        raise StoreUnavailableError("read-only filesystem")


class TestResolution:
    def test_nothing_configured(self, resolver) -> None:
        """Fresh process, no environment and no store: unauthenticated."""
        credential = resolver.get_active()
        assert credential.provenance == Provenance.NONE
        assert credential.api_key is None
        with pytest.raises(UnauthorizedError) as exc_info:
            resolver.require_active()
        assert "x402" in exc_info.value.next_step

    def test_environment_only(self) -> None:
        resolver = CredentialResolver(MemoryStore(), environ={"DRITAN_API_KEY": ENV_KEY})
        credential = resolver.get_active()
        assert (credential.api_key, credential.provenance) == (ENV_KEY, Provenance.ENVIRONMENT)

    def test_blank_environment_is_ignored(self) -> None:
        resolver = CredentialResolver(MemoryStore(), environ={"DRITAN_API_KEY": "   "})
        assert resolver.get_active().provenance == Provenance.NONE

    def test_persisted_wins_over_environment(self) -> None:
        """With both present at startup the persisted key is used, not the environment."""
        resolver = CredentialResolver(
            MemoryStore(persisted()), environ={"DRITAN_API_KEY": ENV_KEY}
        )
        credential = resolver.get_active()
        assert (credential.api_key, credential.provenance) == (PERSISTED_KEY, Provenance.PERSISTED)

    def test_environment_key_is_never_persisted(self) -> None:
        store = MemoryStore()
        resolver = CredentialResolver(store, environ={"DRITAN_API_KEY": ENV_KEY})
        resolver.get_active()
        resolver.status()
        assert store.writes == 0
        assert store.read() is None

    def test_resolution_is_cached(self) -> None:
        store = MemoryStore(persisted())
        resolver = CredentialResolver(store, environ={})
        resolver.get_active()
        resolver.get_active()
        assert store.reads == 1

    def test_custom_environment_variable(self) -> None:
        resolver = CredentialResolver(
            MemoryStore(), api_key_env="MY_KEY", environ={"MY_KEY": ENV_KEY}
        )
        assert resolver.get_active().api_key == ENV_KEY

    def test_undecodable_store_falls_back_to_environment(self, tmp_path) -> None:
        path = tmp_path / "credentials.json"
        path.write_bytes(b"\xff\xfe")
        resolver = CredentialResolver(FileSystemStore(path), environ={"DRITAN_API_KEY": ENV_KEY})
        credential = resolver.get_active()
        assert (credential.api_key, credential.provenance) == (ENV_KEY, Provenance.ENVIRONMENT)


class TestSetActive:
    def test_takes_effect_without_store_read(self, store, resolver) -> None:
        """Setting a key is visible immediately, with no durable read."""
        resolver.set_active("abc123def456", Provenance.RUNTIME)
        credential = resolver.get_active()
        assert (credential.api_key, credential.provenance) == ("abc123def456", Provenance.RUNTIME)
        assert store.reads == 0

    def test_overrides_cached_persisted_key(self) -> None:
        resolver = CredentialResolver(MemoryStore(persisted()), environ={})
        assert resolver.get_active().provenance == Provenance.PERSISTED
        resolver.set_active("dk_runtime_cccccccc")
        assert resolver.get_active().api_key == "dk_runtime_cccccccc"

    def test_last_writer_wins(self, resolver) -> None:
        resolver.set_active("dk_first_11111111", Provenance.ISSUANCE)
        resolver.set_active("dk_second_2222222", Provenance.RUNTIME)
        assert resolver.get_active().api_key == "dk_second_2222222"

    def test_writes_through_to_store(self, store, resolver) -> None:
        resolver.set_active("dk_issued_dddddddd", Provenance.ISSUANCE)
        stored = store.read()
        assert stored.api_key == "dk_issued_dddddddd"
        assert stored.source == Provenance.ISSUANCE

    def test_survives_restart(self, tmp_path) -> None:
        path = tmp_path / "credentials.json"
        CredentialResolver(FileSystemStore(path), environ={}).set_active("dk_durable_eeeeeee")

        restarted = CredentialResolver(FileSystemStore(path), environ={})
        credential = restarted.get_active()
        assert (credential.api_key, credential.provenance) == (
            "dk_durable_eeeeeee",
            Provenance.PERSISTED,
        )

    @pytest.mark.parametrize("provenance", [Provenance.ENVIRONMENT, Provenance.PERSISTED, "none"])
    def test_rejects_non_settable_provenance(self, resolver, provenance) -> None:
        with pytest.raises(InvalidRequestError):
            resolver.set_active("dk_whatever_12345", provenance)

    @pytest.mark.parametrize("value", ["", "   "])
    def test_rejects_empty_key(self, resolver, value) -> None:
        with pytest.raises(InvalidRequestError):
            resolver.set_active(value)

    def test_store_failure_keeps_key_active(self) -> None:
        resolver = CredentialResolver(BrokenStore(), environ={})
        resolver.set_active("dk_memory_only_fff")
        assert resolver.get_active().api_key == "dk_memory_only_fff"
        assert resolver.store_warnings == ["disk full"]
        assert resolver.status()["warnings"] == ["disk full"]


class TestClearActive:
    def test_falls_back_to_environment(self) -> None:
        """After clearing, the environment key is used rather than nothing."""
        store = MemoryStore(persisted())
        resolver = CredentialResolver(store, environ={"DRITAN_API_KEY": ENV_KEY})
        assert resolver.get_active().api_key == PERSISTED_KEY

        result = resolver.clear_active()

        assert result.cleared is True
        assert result.removed_from_store is True
        assert result.env_fallback is True
        assert result.next_provenance == Provenance.ENVIRONMENT
        assert "note" in result.to_dict()
        credential = resolver.get_active()
        assert (credential.api_key, credential.provenance) == (ENV_KEY, Provenance.ENVIRONMENT)

    def test_clears_to_none(self, resolver) -> None:
        resolver.set_active("dk_runtime_gggggggg")
        result = resolver.clear_active()
        assert result.next_provenance == Provenance.NONE
        assert result.env_fallback is False
        assert resolver.get_active().provenance == Provenance.NONE

    def test_clear_when_nothing_set(self, resolver) -> None:
        result = resolver.clear_active()
        assert result.cleared is False
        assert result.removed_from_store is False

    def test_store_failure_is_reported(self) -> None:
        resolver = CredentialResolver(BrokenStore(persisted()), environ={})
        resolver.get_active()
        result = resolver.clear_active()
        assert result.removed_from_store is False
        assert "read-only filesystem" in result.warnings
        # The persisted copy could not be removed, so it comes back
        assert result.next_provenance == Provenance.PERSISTED
        assert resolver.get_active().provenance == Provenance.PERSISTED


class TestStatus:
    def test_unauthenticated(self, resolver) -> None:
        status = resolver.status()
        assert status["authenticated"] is False
        assert status["provenance"] == "none"
        assert status["apiKey"] is None
        assert "nextStep" in status

    def test_reports_shadowed_environment_key(self) -> None:
        resolver = CredentialResolver(
            MemoryStore(persisted()), environ={"DRITAN_API_KEY": ENV_KEY}
        )
        status = resolver.status()
        assert status["authenticated"] is True
        assert status["provenance"] == "persisted"
        assert status["shadowed"] == ["environment"]
        assert status["environment"]["hasValue"] is True

    def test_never_exposes_full_key(self, resolver) -> None:
        resolver.set_active("dk_secret_0123456789")
        status = resolver.status()
        assert "dk_secret_0123456789" not in str(status)
        assert status["apiKey"] == "dk_s…6789"
        assert status["store"] == {"location": "memory", "hasValue": True, "source": "runtime"}
