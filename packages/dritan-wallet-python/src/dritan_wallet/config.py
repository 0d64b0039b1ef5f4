"""Settings for the Dritan wallet SDK, read from the environment."""

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_BASE_URL = "https://us-east.dritan.dev"
DEFAULT_RPC_URL = "https://api.mainnet-beta.solana.com"
DEFAULT_CONFIG_DIR = Path.home() / ".config" / "dritan-wallet"
DEFAULT_WALLET_DIR = DEFAULT_CONFIG_DIR / "wallets"
DEFAULT_CREDENTIAL_PATH = DEFAULT_CONFIG_DIR / "credentials.json"
API_KEY_ENV = "DRITAN_API_KEY"


def _float_env(environ: Mapping[str, str], name: str, default: float) -> float:
    raw = environ.get(name)
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number of seconds, got {raw!r}") from None
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {raw!r}")
    return value


@dataclass
class WalletSettings:
    """Configuration for an :class:`~dritan_wallet.wallet.AgentWallet`.

    The API key itself is not part of the settings: the credential resolver
    reads ``api_key_env`` lazily so that clearing a stored key falls back to
    whatever the environment holds at that moment.
    """

    base_url: str = DEFAULT_BASE_URL
    rpc_url: str = DEFAULT_RPC_URL
    wallet_dir: Path = field(default_factory=lambda: DEFAULT_WALLET_DIR)
    credential_path: Path = field(default_factory=lambda: DEFAULT_CREDENTIAL_PATH)
    api_key_env: str = API_KEY_ENV
    http_timeout_secs: float = 30.0
    confirm_timeout_secs: float = 60.0
    confirm_poll_secs: float = 2.0
    keygen_binary: str = "solana-keygen"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "WalletSettings":
        """Build settings from environment variables, falling back to defaults."""
        env = os.environ if environ is None else environ
        return cls(
            base_url=env.get("DRITAN_BASE_URL") or DEFAULT_BASE_URL,
            rpc_url=env.get("SOLANA_RPC_URL") or DEFAULT_RPC_URL,
            wallet_dir=Path(env["DRITAN_WALLET_DIR"]).expanduser()
            if env.get("DRITAN_WALLET_DIR")
            else DEFAULT_WALLET_DIR,
            credential_path=Path(env["DRITAN_CREDENTIAL_PATH"]).expanduser()
            if env.get("DRITAN_CREDENTIAL_PATH")
            else DEFAULT_CREDENTIAL_PATH,
            http_timeout_secs=_float_env(env, "DRITAN_HTTP_TIMEOUT", 30.0),
            confirm_timeout_secs=_float_env(env, "DRITAN_CONFIRM_TIMEOUT", 60.0),
            keygen_binary=env.get("SOLANA_KEYGEN_BIN") or "solana-keygen",
        )
