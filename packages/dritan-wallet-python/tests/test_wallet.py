"""End-to-end tests for the AgentWallet facade against in-process fakes."""

import asyncio
import json

import httpx
import pytest
from solders.keypair import Keypair

from dritan_wallet import (
    AgentWallet,
    AlreadyExistsError,
    InvalidAmountError,
    InvalidRequestError,
    MemoryStore,
    Provenance,
    TransferRejectedError,
    UnauthorizedError,
    WalletSettings,
)

SOL_MINT = "So11111111111111111111111111111111111111112"
USDC_MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"


class TestScenarios:
    def test_fresh_process_is_unauthorized(self, make_wallet) -> None:
        """No environment and no stored key: the active credential is unavailable."""
        wallet = make_wallet()
        assert wallet.get_active_credential().provenance == Provenance.NONE
        with pytest.raises(UnauthorizedError):
            wallet.resolver.require_active()

    def test_create_twice_at_same_path(self, make_wallet, tmp_path) -> None:
        wallet = make_wallet()
        created = wallet.create_local_wallet("w", tmp_path)
        assert created.wallet_path == (tmp_path / "w.json").resolve()

        with pytest.raises(AlreadyExistsError):
            wallet.create_local_wallet("w", tmp_path)

    def test_underfunded_payment_never_claims(self, make_wallet, api, rpc, keyfile) -> None:
        path, _ = keyfile
        rpc.balance = 0
        wallet = make_wallet()

        quote = asyncio.run(wallet.request_quote(60))
        assert quote.receiver
        assert quote.amount_lamports > 0
        with pytest.raises(TransferRejectedError):
            asyncio.run(wallet.pay_quote(quote.quote_id, path))

        assert api.calls("/v1/x402/api-keys") == []
        assert wallet.get_active_credential().provenance == Provenance.NONE

    def test_runtime_key_without_store_read(self, make_wallet) -> None:
        store = MemoryStore()
        wallet = make_wallet(store=store)
        wallet.set_api_key("abc123def456")
        credential = wallet.get_active_credential()
        assert (credential.api_key, credential.provenance) == ("abc123def456", Provenance.RUNTIME)
        assert store.reads == 0


class TestFullIssuanceFlow:
    def test_buy_key_then_swap(self, make_wallet, api, rpc, keyfile, swap_tx) -> None:
        path, keypair = keyfile
        api.route(
            "POST",
            "/swap/build",
            lambda r: httpx.Response(200, json={"transactionBase64": swap_tx(keypair)}),
        )
        api.route("POST", "/swap/broadcast", lambda r: httpx.Response(200, json={"signature": "sw4p"}))
        wallet = make_wallet()

        quote = asyncio.run(wallet.request_quote(60, wallet_path=path))
        assert quote.payer == str(keypair.pubkey())
        receipt = asyncio.run(wallet.pay_quote(quote.quote_id, path))
        api.mark_paid(receipt.signature)
        issued = asyncio.run(wallet.claim_key(quote.quote_id, receipt.signature))

        assert wallet.auth_status()["provenance"] == "issuance"
        result = asyncio.run(wallet.build_sign_and_broadcast(path, SOL_MINT, USDC_MINT, 1_000))
        assert result.signature == "sw4p"
        assert api.calls("/swap/build")[0].headers["x-api-key"] == issued.api_key

    def test_claimed_key_survives_restart(self, make_wallet, api, keyfile) -> None:
        path, _ = keyfile
        wallet = make_wallet(environ={"DRITAN_API_KEY": "dk_env_key_000000"})
        quote = asyncio.run(wallet.request_quote(60))
        receipt = asyncio.run(wallet.pay_quote(quote, path))
        api.mark_paid(receipt.signature)
        issued = asyncio.run(wallet.claim_key(quote.quote_id, receipt.signature))

        restarted = make_wallet(environ={"DRITAN_API_KEY": "dk_env_key_000000"})
        credential = restarted.get_active_credential()
        assert (credential.api_key, credential.provenance) == (issued.api_key, Provenance.PERSISTED)

    def test_pay_unknown_quote_id(self, make_wallet, keyfile) -> None:
        path, _ = keyfile
        with pytest.raises(InvalidRequestError, match="Unknown quote"):
            asyncio.run(make_wallet().pay_quote("q_missing", path))


class TestWalletOperations:
    def test_check_prereqs(self, make_wallet, generator) -> None:
        wallet = make_wallet()
        report = wallet.check_prereqs()
        assert report["ready"] is False
        assert report["checks"][0]["ok"] is True
        assert report["checks"][1]["ok"] is False
        assert "x402" in report["nextAction"]

        wallet.set_api_key("dk_runtime_1234567")
        assert wallet.check_prereqs()["ready"] is True

        generator.ok = False
        report = wallet.check_prereqs()
        assert report["ready"] is False
        assert "Install Solana CLI" in report["nextAction"]

    def test_default_wallet_dir(self, make_wallet, tmp_path) -> None:
        created = make_wallet().create_local_wallet("agent wallet")
        assert created.wallet_path == (tmp_path / "wallets" / "agent-wallet.json").resolve()

    def test_get_address_and_balance(self, make_wallet, rpc, keyfile) -> None:
        path, keypair = keyfile
        rpc.balance = 2_500_000_000
        wallet = make_wallet()
        assert wallet.get_address(path)["address"] == str(keypair.pubkey())
        balance = asyncio.run(wallet.get_balance(path))
        assert balance["lamports"] == 2_500_000_000
        assert balance["sol"] == 2.5
        assert balance["rpcUrl"] == "http://rpc.test"

    def test_transfer_sol_in_sol_units(self, make_wallet, rpc, keyfile) -> None:
        path, _ = keyfile
        to = str(Keypair().pubkey())
        result = asyncio.run(make_wallet().transfer_sol(path, to, sol="0.25"))
        assert result.lamports == 250_000_000
        assert result.to_dict()["sol"] == 0.25
        assert rpc.count("sendTransaction") == 1

    @pytest.mark.parametrize("amounts", [{}, {"lamports": 1, "sol": "1"}])
    def test_transfer_needs_exactly_one_amount(self, make_wallet, rpc, keyfile, amounts) -> None:
        path, _ = keyfile
        with pytest.raises(InvalidAmountError):
            asyncio.run(make_wallet().transfer_sol(path, str(Keypair().pubkey()), **amounts))
        assert rpc.calls == []

    def test_clear_falls_back_to_environment(self, make_wallet) -> None:
        wallet = make_wallet(environ={"DRITAN_API_KEY": "dk_env_key_000000"})
        wallet.set_api_key("dk_runtime_1234567")
        result = wallet.clear_api_key()
        assert result.to_dict()["envFallback"] is True
        assert wallet.get_active_credential().provenance == Provenance.ENVIRONMENT

    def test_build_swap_needs_public_key(self, make_wallet) -> None:
        wallet = make_wallet()
        wallet.set_api_key("dk_runtime_1234567")
        with pytest.raises(InvalidRequestError, match="userPublicKey"):
            asyncio.run(wallet.build_swap(SOL_MINT, USDC_MINT, 1_000))

    def test_build_swap_from_wallet_path(self, make_wallet, api, keyfile) -> None:
        path, keypair = keyfile
        api.route("POST", "/swap/build", lambda r: httpx.Response(200, json={"transaction": "AAAA"}))
        wallet = make_wallet()
        wallet.set_api_key("dk_runtime_1234567")
        built = asyncio.run(
            wallet.build_swap(SOL_MINT, USDC_MINT, "1000", wallet_path=path, slippage_bps=100)
        )
        assert built.transaction_base64 == "AAAA"
        body = json.loads(api.calls("/swap/build")[0].content)
        assert body["userPublicKey"] == str(keypair.pubkey())
        assert body["slippageBps"] == 100

    def test_to_dict_hides_key(self, make_wallet) -> None:
        wallet = make_wallet()
        wallet.set_api_key("dk_runtime_1234567")
        state = wallet.to_dict()
        assert "dk_runtime_1234567" not in str(state)
        assert state["credentialProvenance"] == "runtime"
        assert state["issuanceState"] == "idle"


class TestFromEnv:
    def test_reads_settings(self, tmp_path) -> None:
        environ = {
            "DRITAN_BASE_URL": "http://api.example",
            "SOLANA_RPC_URL": "https://api.devnet.solana.com",
            "DRITAN_WALLET_DIR": str(tmp_path / "w"),
            "DRITAN_CREDENTIAL_PATH": str(tmp_path / "c.json"),
            "DRITAN_HTTP_TIMEOUT": "5",
            "DRITAN_API_KEY": "dk_env_key_000000",
        }
        wallet = AgentWallet.from_env(environ)
        assert wallet.settings.base_url == "http://api.example"
        assert wallet.settings.http_timeout_secs == 5.0
        assert wallet.adapter.name == "Solana Devnet"
        assert wallet.get_active_credential().provenance == Provenance.ENVIRONMENT

    def test_rejects_bad_timeout(self) -> None:
        with pytest.raises(ValueError, match="DRITAN_CONFIRM_TIMEOUT"):
            WalletSettings.from_env({"DRITAN_CONFIRM_TIMEOUT": "soon"})
