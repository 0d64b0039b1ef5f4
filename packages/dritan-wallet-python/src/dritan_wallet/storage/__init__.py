"""Storage module for the persisted API credential."""

import json
import logging
import os
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Protocol

from ..types import Provenance, StoredCredential, StoreUnavailableError

logger = logging.getLogger("dritan_wallet.storage")


class CredentialStore(Protocol):
    """Protocol for credential storage backends."""

    @property
    def location(self) -> str:
        """Human-readable location for status output."""
        ...

    def read(self) -> StoredCredential | None:
        """Load the stored credential, or ``None`` if there is none."""
        ...

    def write(self, credential: StoredCredential) -> None:
        """Replace the stored credential."""
        ...

    def remove(self) -> bool:
        """Delete the stored credential. Returns whether anything was deleted."""
        ...


class MemoryStore:
    """In-memory store for testing."""

    def __init__(self, credential: StoredCredential | None = None) -> None:
        self._credential = credential
        self.reads = 0
        self.writes = 0

    @property
    def location(self) -> str:
        return "memory"

    def read(self) -> StoredCredential | None:
        self.reads += 1
        return self._credential

    def write(self, credential: StoredCredential) -> None:
        self.writes += 1
        self._credential = credential

    def remove(self) -> bool:
        existed = self._credential is not None
        self._credential = None
        return existed


class FileSystemStore:
    """
    JSON file store with owner-only permissions.

    The file holds a single object ``{"apiKey", "source", "updatedAt"}``.
    Writes go to a temporary sibling that is renamed over the old file, so a
    crash mid-write leaves the previous value intact.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path).expanduser()

    @property
    def path(self) -> Path:
        return self._path

    @property
    def location(self) -> str:
        return str(self._path)

    def read(self) -> StoredCredential | None:
        """Load the credential; missing, unreadable or malformed files yield ``None``."""
        try:
            text = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Cannot read credential store {self._path}: {e}")
            return None

        try:
            data = json.loads(text)
            api_key = data["apiKey"]
            if not isinstance(api_key, str) or not api_key.strip():
                raise ValueError("apiKey must be a non-empty string")
            source = _parse_source(data.get("source"))
            updated_at = _parse_timestamp(data.get("updatedAt"))
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Ignoring malformed credential store {self._path}: {e}")
            return None

        return StoredCredential(api_key=api_key.strip(), source=source, updated_at=updated_at)

    def write(self, credential: StoredCredential) -> None:
        payload = json.dumps(credential.to_json(), indent=2)
        tmp_name = None
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            # mkstemp creates the file with mode 0600
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self._path.name}.", suffix=".tmp", dir=self._path.parent
            )
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self._path)
            tmp_name = None
            try:
                self._path.chmod(0o600)
            except (OSError, NotImplementedError):
                pass  # Windows doesn't support chmod
        except OSError as e:
            raise StoreUnavailableError(
                f"Cannot write credential store {self._path}: {e}",
                details={"path": str(self._path)},
                cause=e,
            ) from e
        finally:
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    pass

    def remove(self) -> bool:
        try:
            # Overwrite with zeros before deleting
            size = self._path.stat().st_size
            self._path.write_bytes(b"\x00" * size)
            self._path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StoreUnavailableError(
                f"Cannot remove credential store {self._path}: {e}",
                details={"path": str(self._path)},
                cause=e,
            ) from e
        return True


def _parse_source(raw: object) -> Provenance:
    try:
        source = Provenance(raw)
    except ValueError:
        return Provenance.RUNTIME
    if source in (Provenance.NONE, Provenance.PERSISTED, Provenance.ENVIRONMENT):
        return Provenance.RUNTIME
    return source


def _parse_timestamp(raw: object) -> datetime:
    if not isinstance(raw, str):
        raise ValueError("updatedAt must be an ISO-8601 string")
    return datetime.fromisoformat(raw.replace("Z", "+00:00"))


__all__ = [
    "CredentialStore",
    "MemoryStore",
    "FileSystemStore",
]
