"""Local custody of the agent's Solana signing keypair.

The secret key is read from exactly one JSON key file (the format written by
``solana-keygen``: an array of 64 byte values, seed followed by public key) and
kept inside a :class:`KeypairHandle`. Only the public address and signatures
ever leave the handle.
"""

import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path

from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.signature import Signature

from .keygen import KeyGenerator
from .types import AlreadyExistsError, InvalidFormatError, KeygenFailedError

logger = logging.getLogger("dritan_wallet.keypair")

SECRET_KEY_LENGTH = 64
_UNSAFE_NAME_CHARS = re.compile(r"[^a-zA-Z0-9._-]")


class KeypairHandle:
    """
    Signing capability for one local key file.

    Example:
        >>> handle = load_keypair("~/.config/dritan-wallet/wallets/agent-wallet.json")
        >>> handle.address
        '7xKX...'
        >>> signature = handle.sign_message(message_bytes)
    """

    __slots__ = ("_keypair", "_path")

    def __init__(self, keypair: Keypair, path: Path | None = None) -> None:
        self._keypair = keypair
        self._path = path

    @property
    def address(self) -> str:
        """Base58 public address."""
        return str(self._keypair.pubkey())

    @property
    def path(self) -> Path | None:
        """Key file this handle was loaded from."""
        return self._path

    def pubkey(self) -> Pubkey:
        return self._keypair.pubkey()

    def sign_message(self, message: bytes) -> Signature:
        """Ed25519-sign raw message bytes."""
        return self._keypair.sign_message(message)

    def __repr__(self) -> str:
        return f"KeypairHandle(address={self.address!r})"

    def __reduce__(self):
        raise TypeError("KeypairHandle holds secret key material and cannot be serialized")


@dataclass
class LocalWallet:
    """A key file on disk and its public address."""

    wallet_path: Path
    address: str

    def to_dict(self) -> dict[str, str]:
        return {"walletPath": str(self.wallet_path), "address": self.address}


def to_wallet_path(name: str, wallet_dir: str | Path) -> Path:
    """Map a wallet name to ``<wallet_dir>/<name>.json``, creating the directory."""
    directory = Path(wallet_dir).expanduser().resolve()
    directory.mkdir(parents=True, exist_ok=True)
    safe_name = _UNSAFE_NAME_CHARS.sub("-", name)
    return directory / f"{safe_name}.json"


def _parse_secret(path: Path, text: str) -> bytes:
    try:
        values = json.loads(text)
    except json.JSONDecodeError as e:
        raise InvalidFormatError(
            f"Invalid wallet file format: {path} is not JSON", details={"walletPath": str(path)}
        ) from e

    if (
        not isinstance(values, list)
        or len(values) != SECRET_KEY_LENGTH
        or any(isinstance(v, bool) or not isinstance(v, int) or not 0 <= v <= 255 for v in values)
    ):
        raise InvalidFormatError(
            f"Invalid wallet file format: {path} must hold an array of "
            f"{SECRET_KEY_LENGTH} byte values",
            details={"walletPath": str(path)},
        )

    secret = bytes(values)
    # The trailing 32 bytes must be the public key of the leading seed
    derived = Ed25519PrivateKey.from_private_bytes(secret[:32]).public_key().public_bytes_raw()
    if derived != secret[32:]:
        raise InvalidFormatError(
            f"Invalid wallet file format: {path} public key does not match its seed",
            details={"walletPath": str(path)},
        )
    return secret


def load_keypair(path: str | Path) -> KeypairHandle:
    """Load the key file at ``path``.

    Raises:
        InvalidFormatError: the file is missing, unreadable or not a 64-byte
            Ed25519 secret key.
    """
    path = Path(path).expanduser().resolve()
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise InvalidFormatError(
            f"Cannot read wallet file {path}: {getattr(e, 'strerror', None) or e}",
            next_step="Check walletPath, or create a wallet with wallet_create_local.",
            details={"walletPath": str(path)},
            cause=e,
        ) from e

    secret = _parse_secret(path, text)
    return KeypairHandle(Keypair.from_bytes(secret), path)


def create_local_wallet(path: str | Path, generator: KeyGenerator) -> LocalWallet:
    """Generate a new key file at ``path`` and return its address.

    Never overwrites: an existing file at ``path`` is an error, every time.
    """
    path = Path(path).expanduser().resolve()
    path.parent.mkdir(parents=True, exist_ok=True)

    if path.exists():
        raise AlreadyExistsError(
            f"Wallet already exists: {path}", details={"walletPath": str(path)}
        )

    generator.generate(path)
    if not path.exists():
        raise KeygenFailedError(
            f"Key generator reported success but wrote no file at {path}",
            details={"walletPath": str(path)},
        )

    try:
        path.chmod(0o600)
    except (OSError, NotImplementedError):
        pass  # Windows doesn't support chmod

    handle = load_keypair(path)
    logger.info(f"Created local wallet {handle.address} at {path}")
    return LocalWallet(wallet_path=path, address=handle.address)
