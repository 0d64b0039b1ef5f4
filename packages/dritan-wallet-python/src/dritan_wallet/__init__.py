"""
Dritan Wallet SDK for AI Agents

A Python SDK that gives an agent a local Solana keypair, a Dritan API key
(bought with SOL through the x402 quote -> pay -> claim flow when none is
configured) and a signing pipeline for transfers and API-built swaps.

Example:
    >>> from dritan_wallet import AgentWallet
    >>>
    >>> wallet = AgentWallet.from_env()
    >>> created = wallet.create_local_wallet("agent-wallet")
    >>>
    >>> quote = await wallet.request_quote(60, wallet_path=created.wallet_path)
    >>> receipt = await wallet.pay_quote(quote, created.wallet_path)
    >>> issued = await wallet.claim_key(quote.quote_id, receipt.signature)
"""

from .wallet import AgentWallet
from .config import WalletSettings
from .credentials import ClearResult, CredentialResolver
from .storage import CredentialStore, FileSystemStore, MemoryStore
from .keygen import KeyGenerator, KeygenCheck, SolanaKeygenCli, install_hint
from .keypair import KeypairHandle, LocalWallet, create_local_wallet, load_keypair
from .api import DritanClient
from .x402 import IssuanceProtocol, IssuanceState, PaymentReceipt
from .signing import (
    TransferResult,
    build_sign_and_broadcast,
    normalize_lamports,
    sign_and_broadcast,
    sign_transaction_base64,
    transfer_lamports,
)
from .chains import SolanaAdapter, SolanaChainConfig, SolanaNetworks
from .types import (
    Provenance,
    Credential,
    Pricing,
    Quote,
    IssuedKey,
    Balance,
    TxHash,
    SwapBuildRequest,
    SwapBuildResult,
    SwapResult,
    ErrorCode,
    DritanWalletError,
    UnauthorizedError,
    AlreadyExistsError,
    InvalidFormatError,
    ToolMissingError,
    KeygenFailedError,
    QuoteExpiredError,
    PaymentUnverifiedError,
    SignerMismatchError,
    TransferRejectedError,
    InvalidAmountError,
    TransientError,
    StoreUnavailableError,
    InvalidRequestError,
    ApiError,
)

__version__ = "0.1.0"
__all__ = [
    # Wallet
    "AgentWallet",
    "WalletSettings",
    # Credentials
    "ClearResult",
    "CredentialResolver",
    "CredentialStore",
    "FileSystemStore",
    "MemoryStore",
    # Key custody
    "KeyGenerator",
    "KeygenCheck",
    "SolanaKeygenCli",
    "install_hint",
    "KeypairHandle",
    "LocalWallet",
    "create_local_wallet",
    "load_keypair",
    # Issuance
    "DritanClient",
    "IssuanceProtocol",
    "IssuanceState",
    "PaymentReceipt",
    # Signing
    "TransferResult",
    "build_sign_and_broadcast",
    "normalize_lamports",
    "sign_and_broadcast",
    "sign_transaction_base64",
    "transfer_lamports",
    # Chains
    "SolanaAdapter",
    "SolanaChainConfig",
    "SolanaNetworks",
    # Types
    "Provenance",
    "Credential",
    "Pricing",
    "Quote",
    "IssuedKey",
    "Balance",
    "TxHash",
    "SwapBuildRequest",
    "SwapBuildResult",
    "SwapResult",
    # Errors
    "ErrorCode",
    "DritanWalletError",
    "UnauthorizedError",
    "AlreadyExistsError",
    "InvalidFormatError",
    "ToolMissingError",
    "KeygenFailedError",
    "QuoteExpiredError",
    "PaymentUnverifiedError",
    "SignerMismatchError",
    "TransferRejectedError",
    "InvalidAmountError",
    "TransientError",
    "StoreUnavailableError",
    "InvalidRequestError",
    "ApiError",
]
