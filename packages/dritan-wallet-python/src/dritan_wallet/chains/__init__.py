"""Chain adapters."""

from .solana import (
    Confirmation,
    LatestBlockhash,
    RpcError,
    SolanaAdapter,
    SolanaChainConfig,
    SolanaNetworks,
)

__all__ = [
    "Confirmation",
    "LatestBlockhash",
    "RpcError",
    "SolanaAdapter",
    "SolanaChainConfig",
    "SolanaNetworks",
]
