"""Shared fixtures: fake key generator, fake Solana node, fake Dritan API."""

import base64
import json
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable

import httpx
import pytest
from solders.hash import Hash
from solders.instruction import AccountMeta, Instruction
from solders.keypair import Keypair
from solders.message import MessageV0
from solders.signature import Signature
from solders.system_program import TransferParams, transfer
from solders.transaction import Transaction, VersionedTransaction

from dritan_wallet import (
    AgentWallet,
    CredentialResolver,
    KeygenCheck,
    MemoryStore,
    SolanaAdapter,
    SolanaChainConfig,
    WalletSettings,
    install_hint,
)

API_URL = "http://dritan.test"
RPC_URL = "http://rpc.test"
LAMPORTS_PER_SOL = 1_000_000_000


def write_keyfile(path: Path, keypair: Keypair | None = None) -> Keypair:
    """Write a solana-keygen style key file (JSON array of 64 bytes)."""
    keypair = keypair or Keypair()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(list(bytes(keypair))))
    return keypair


def unsigned_swap(payer: Keypair, extra_signer: Keypair | None = None) -> str:
    """An unsigned v0 transaction shaped like an API-built swap."""
    to = extra_signer.pubkey() if extra_signer else Keypair().pubkey()
    instruction = transfer(TransferParams(from_pubkey=payer.pubkey(), to_pubkey=to, lamports=1))
    if extra_signer is not None:
        # Recipient also signs, so the message needs two signatures
        accounts = list(instruction.accounts)
        accounts[1] = AccountMeta(to, is_signer=True, is_writable=True)
        instruction = Instruction(instruction.program_id, instruction.data, accounts)
    message = MessageV0.try_compile(payer.pubkey(), [instruction], [], Hash.new_unique())
    signatures = [Signature.default()] * message.header.num_required_signatures
    tx = VersionedTransaction.populate(message, signatures)
    return base64.b64encode(bytes(tx)).decode()


def future(minutes: int = 10) -> str:
    return (datetime.now(timezone.utc) + timedelta(minutes=minutes)).isoformat()


class FakeGenerator:
    """Key generator that writes a fresh keypair without any subprocess."""

    def __init__(self, write: bool = True, ok: bool = True) -> None:
        self.write = write
        self.ok = ok
        self.calls: list[Path] = []

    def generate(self, path: Path) -> None:
        self.calls.append(path)
        if self.write:
            write_keyfile(path)

    def check(self) -> KeygenCheck:
        return KeygenCheck(
            ok=self.ok,
            binary="solana-keygen",
            version="solana-keygen 2.1.0" if self.ok else None,
            install_hint=install_hint("linux"),
        )


class FakeRpc:
    """In-process Solana JSON-RPC node."""

    def __init__(self, balance: int = 10 * LAMPORTS_PER_SOL) -> None:
        self.balance = balance
        self.blockhash = str(Hash.new_unique())
        self.last_valid_block_height = 1_000
        self.block_height = 900
        self.status: dict[str, Any] | None = {
            "slot": 42,
            "confirmations": None,
            "err": None,
            "confirmationStatus": "confirmed",
        }
        self.send_error: dict[str, Any] | None = None
        self.sent: list[Transaction] = []
        self.calls: list[str] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        method, params = body["method"], body["params"]
        self.calls.append(method)

        if method == "getBalance":
            result: Any = {"context": {"slot": 1}, "value": self.balance}
        elif method == "getLatestBlockhash":
            result = {
                "context": {"slot": 1},
                "value": {
                    "blockhash": self.blockhash,
                    "lastValidBlockHeight": self.last_valid_block_height,
                },
            }
        elif method == "sendTransaction":
            if self.send_error is not None:
                return httpx.Response(
                    200, json={"jsonrpc": "2.0", "id": body["id"], "error": self.send_error}
                )
            tx = Transaction.from_bytes(base64.b64decode(params[0]))
            self.sent.append(tx)
            result = str(tx.signatures[0])
        elif method == "getSignatureStatuses":
            result = {"context": {"slot": 43}, "value": [self.status]}
        elif method == "getBlockHeight":
            result = self.block_height
        else:
            return httpx.Response(
                200,
                json={
                    "jsonrpc": "2.0",
                    "id": body["id"],
                    "error": {"code": -32601, "message": "Method not found"},
                },
            )
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": result})

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def adapter(self, **kwargs: Any) -> SolanaAdapter:
        kwargs.setdefault("poll_interval_secs", 0)
        kwargs.setdefault("confirm_timeout_secs", 1)
        return SolanaAdapter(
            SolanaChainConfig(
                name="Solana Test",
                rpc_urls=[RPC_URL],
                explorer_url="https://explorer.solana.com?cluster=devnet",
            ),
            transport=self.transport(),
            **kwargs,
        )

    def count(self, method: str) -> int:
        return self.calls.count(method)


Responder = Callable[[httpx.Request], httpx.Response]


class FakeDritanApi:
    """In-process Dritan API with the x402 issuer and swap endpoints."""

    def __init__(self) -> None:
        self.receiver = str(Keypair().pubkey())
        self.issued_key = "dk_issued_0123456789abcdef"
        self.requests: list[httpx.Request] = []
        self._routes: dict[tuple[str, str], Responder] = {}
        self._paid: set[str] = set()
        self._claims: dict[tuple[str, str], str] = {}

        self.route("GET", "/health", lambda r: httpx.Response(200, text="ok"))
        self.route(
            "GET",
            "/v1/x402/pricing",
            lambda r: httpx.Response(
                200,
                json={
                    "receiver": self.receiver,
                    "lamportsPerMinute": 10_000,
                    "minDurationMinutes": 5,
                    "maxDurationMinutes": 10_080,
                    "network": "solana-devnet",
                },
            ),
        )
        self.route("POST", "/v1/x402/api-keys/quote", self._quote)
        self.route("POST", "/v1/x402/api-keys", self._claim)

    def route(self, method: str, path: str, responder: Responder) -> None:
        self._routes[(method, path)] = responder

    def mark_paid(self, signature: str) -> None:
        self._paid.add(signature)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        responder = self._routes.get((request.method, request.url.path))
        if responder is None:
            return httpx.Response(404, json={"error": "not found"})
        return responder(request)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def calls(self, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == path]

    def _quote(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        minutes = body["durationMinutes"]
        return httpx.Response(
            200,
            json={
                "quoteId": f"q_{len(self.calls('/v1/x402/api-keys/quote'))}",
                "amountLamports": minutes * 10_000,
                "receiver": self.receiver,
                "durationMinutes": minutes,
                "payer": body.get("payer"),
                "expiresAt": future(),
            },
        )

    def _claim(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        pair = (body["quoteId"], body["paymentSignature"])
        if pair in self._claims:
            return httpx.Response(200, json={"apiKey": self._claims[pair]})
        if body["paymentSignature"] not in self._paid:
            return httpx.Response(
                402,
                json={"error": {"code": "PAYMENT_UNVERIFIED", "message": "payment not found"}},
            )
        self._claims[pair] = f"{self.issued_key}_{len(self._claims)}"
        return httpx.Response(200, json={"apiKey": self._claims[pair], "expiresAt": future(60)})


@pytest.fixture
def rpc() -> FakeRpc:
    return FakeRpc()


@pytest.fixture
def api() -> FakeDritanApi:
    return FakeDritanApi()


@pytest.fixture
def generator() -> FakeGenerator:
    return FakeGenerator()


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def resolver(store: MemoryStore) -> CredentialResolver:
    return CredentialResolver(store, environ={})


@pytest.fixture
def keyfile(tmp_path: Path) -> tuple[Path, Keypair]:
    path = tmp_path / "w.json"
    return path, write_keyfile(path)


@pytest.fixture
def make_wallet(tmp_path: Path, api: FakeDritanApi, rpc: FakeRpc, generator: FakeGenerator):
    """Build an AgentWallet wired to the fakes."""

    def factory(environ: dict[str, str] | None = None, store: Any = None) -> AgentWallet:
        settings = WalletSettings(
            base_url=API_URL,
            rpc_url=RPC_URL,
            wallet_dir=tmp_path / "wallets",
            credential_path=tmp_path / "credentials.json",
            confirm_timeout_secs=1,
            confirm_poll_secs=0,
        )
        return AgentWallet(
            settings,
            store=store,
            generator=generator,
            environ=environ if environ is not None else {},
            transport=api.transport(),
            rpc_transport=rpc.transport(),
        )

    return factory


@pytest.fixture
def write_key():
    return write_keyfile


@pytest.fixture
def swap_tx():
    return unsigned_swap
