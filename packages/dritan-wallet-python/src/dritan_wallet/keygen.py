"""Key generation port backed by the ``solana-keygen`` binary."""

import logging
import shutil
import subprocess
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from .types import InstallHint, KeygenFailedError, ToolMissingError

logger = logging.getLogger("dritan_wallet.keygen")

_ANZA_INSTALL = [
    'sh -c "$(curl -sSfL https://release.anza.xyz/stable/install)"',
    'export PATH="$HOME/.local/share/solana/install/active_release/bin:$PATH"',
    "solana-keygen --version",
]


def install_hint(platform: str | None = None) -> InstallHint:
    """Install steps for ``solana-keygen`` on the given (or current) platform."""
    platform = platform or sys.platform
    if platform == "darwin":
        return InstallHint(platform="macOS", install_steps=list(_ANZA_INSTALL))
    if platform.startswith("linux"):
        return InstallHint(platform="Linux", install_steps=list(_ANZA_INSTALL))
    if platform in ("win32", "cygwin"):
        return InstallHint(
            platform="Windows",
            install_steps=[
                "Install WSL2 (recommended) and run the Linux install inside WSL.",
                "Or follow the Solana/Anza Windows instructions, then ensure "
                "`solana-keygen` is in PATH.",
            ],
        )
    return InstallHint(
        platform=platform,
        install_steps=["Install the Solana CLI and ensure `solana-keygen` is available in PATH."],
    )


@dataclass
class KeygenCheck:
    """Availability of the key generation binary."""

    ok: bool
    binary: str
    version: str | None
    install_hint: InstallHint

    def to_dict(self) -> dict:
        return {
            "ok": self.ok,
            "binary": self.binary,
            "version": self.version,
            "installHint": self.install_hint.to_dict(),
        }


class KeyGenerator(Protocol):
    """Port for the external key generation collaborator."""

    def generate(self, path: Path) -> None:
        """Write a new JSON secret-key file at ``path``."""
        ...

    def check(self) -> KeygenCheck:
        """Report whether the generator is usable."""
        ...


class SolanaKeygenCli:
    """
    Runs ``solana-keygen`` to create key files.

    Example:
        >>> generator = SolanaKeygenCli()
        >>> generator.check().ok
        True
        >>> generator.generate(Path("agent-wallet.json"))
    """

    def __init__(self, binary: str = "solana-keygen", timeout_secs: float = 60.0) -> None:
        self._binary = binary
        self._timeout_secs = timeout_secs

    @property
    def binary(self) -> str:
        return self._binary

    def check(self) -> KeygenCheck:
        hint = install_hint()
        try:
            proc = subprocess.run(
                [self._binary, "--version"],
                capture_output=True,
                text=True,
                timeout=self._timeout_secs,
            )
        except (OSError, subprocess.TimeoutExpired):
            return KeygenCheck(ok=False, binary=self._binary, version=None, install_hint=hint)

        if proc.returncode != 0:
            return KeygenCheck(ok=False, binary=self._binary, version=None, install_hint=hint)
        return KeygenCheck(
            ok=True,
            binary=self._binary,
            version=(proc.stdout or "").strip() or None,
            install_hint=hint,
        )

    def generate(self, path: Path) -> None:
        if shutil.which(self._binary) is None and not Path(self._binary).exists():
            raise self._missing(f"{self._binary} was not found in PATH")

        try:
            proc = subprocess.run(
                [self._binary, "new", "--no-bip39-passphrase", "--silent", "-o", str(path)],
                capture_output=True,
                text=True,
                timeout=self._timeout_secs,
            )
        except FileNotFoundError as e:
            raise self._missing(str(e), cause=e) from e
        except subprocess.TimeoutExpired as e:
            raise KeygenFailedError(
                f"{self._binary} timed out after {self._timeout_secs}s",
                details={"walletPath": str(path)},
                cause=e,
            ) from e

        if proc.returncode != 0:
            output = (proc.stderr or proc.stdout or "").strip()
            raise KeygenFailedError(
                f"{self._binary} failed ({proc.returncode}): {output}",
                details={"walletPath": str(path), "exitCode": proc.returncode},
            )
        logger.info(f"Generated key file {path}")

    def _missing(self, reason: str, cause: Exception | None = None) -> ToolMissingError:
        hint = install_hint()
        return ToolMissingError(
            f"SOLANA_CLI_MISSING: failed to run {self._binary} ({reason}). "
            f"Install steps ({hint.platform}): {' && '.join(hint.install_steps)}",
            details={"binary": self._binary, "installHint": hint.to_dict()},
            cause=cause,
        )
