"""Wallet engine client against canned HTTP responses."""

import json
import logging
from decimal import Decimal

import pytest
import requests
from hexbytes import HexBytes
from requests_ratelimiter import LimiterAdapter

from payroll_bridge.cctp.calls import BatchCall
from payroll_bridge.cctp.errors import SubmissionError
from payroll_bridge.cctp.constants import CCTP_CHAINS
from payroll_bridge.cctp.testing import FakeWalletEngine
from payroll_bridge.engine.api import WalletEngine, fetch_usdc_balances, parse_transaction_status
from payroll_bridge.engine.session import create_engine_session
from payroll_bridge.logging_retry import LoggingRetry

WALLET = "0x9f1c8c4b2b7d2e5ea1d3f8a2c4b6d8e0f2a4c6e8"
USDC = "0x036CbD53842c5426634e7929541eC2318f3dCF7e"


def _response(status_code: int, body) -> requests.Response:
    response = requests.Response()
    response.status_code = status_code
    if isinstance(body, bytes):
        response._content = body
    else:
        response._content = json.dumps(body).encode() if body is not None else b"Bad Gateway"
    response.url = "http://localhost:3005/"
    return response


@pytest.fixture()
def session():
    return create_engine_session(api_url="http://localhost:3005/", access_token="engine-token")


@pytest.fixture()
def recorded(session, monkeypatch):
    """Replace HTTP calls with canned responses, remember the requests."""
    calls = []
    responses = {}

    def fake_request(method):
        def _request(url, **kwargs):
            calls.append((method, url, kwargs))
            result = responses[method]
            if isinstance(result, Exception):
                raise result
            return result

        return _request

    monkeypatch.setattr(session, "post", fake_request("POST"))
    monkeypatch.setattr(session, "get", fake_request("GET"))
    return calls, responses


def test_session_setup(session):
    assert session.api_url == "http://localhost:3005"
    assert session.headers["Authorization"] == "Bearer engine-token"

    adapter = session.get_adapter("http://localhost:3005/transaction/status/abc")
    assert isinstance(adapter, LimiterAdapter)
    assert isinstance(adapter.max_retries, LoggingRetry)
    # A resubmitted burn batch would burn twice
    assert "POST" not in adapter.max_retries.allowed_methods
    assert "GET" in adapter.max_retries.allowed_methods


def test_logging_retry_keeps_logger():
    custom = logging.getLogger("custom")
    retry = LoggingRetry(total=3, logger=custom)
    assert retry.new(total=2).logger is custom


def test_submit_batch(session, recorded):
    calls, responses = recorded
    responses["POST"] = _response(200, {"result": {"queueId": "q-123"}})
    engine = WalletEngine(session)

    queue_id = engine.submit_transaction_batch(
        84532,
        WALLET,
        [BatchCall(to_address=USDC, data=HexBytes("0x095ea7b3"))],
    )

    assert queue_id == "q-123"
    method, url, kwargs = calls[0]
    assert url == "http://localhost:3005/backend-wallet/84532/send-transaction-batch-atomic"
    assert kwargs["headers"] == {"X-Backend-Wallet-Address": WALLET}
    assert kwargs["json"] == {"transactions": [{"toAddress": USDC, "data": "0x095ea7b3", "value": "0"}]}


def test_submit_batch_rejected(session, recorded):
    _, responses = recorded
    responses["POST"] = _response(400, {"error": {"message": "Insufficient funds for gas"}})

    with pytest.raises(SubmissionError, match="Insufficient funds for gas"):
        WalletEngine(session).submit_transaction_batch(84532, WALLET, [BatchCall(to_address=USDC, data=HexBytes("0x01"))])


def test_submit_batch_unreachable(session, recorded):
    _, responses = recorded
    responses["POST"] = requests.ConnectionError("Connection refused")

    with pytest.raises(SubmissionError, match="unreachable"):
        WalletEngine(session).submit_transaction_batch(84532, WALLET, [BatchCall(to_address=USDC, data=HexBytes("0x01"))])


def test_submit_batch_no_queue_id(session, recorded):
    _, responses = recorded
    responses["POST"] = _response(200, {"result": {}})

    with pytest.raises(SubmissionError, match="queue id"):
        WalletEngine(session).submit_transaction_batch(84532, WALLET, [BatchCall(to_address=USDC, data=HexBytes("0x01"))])


def test_submit_batch_html_body(session, recorded):
    """A proxy answering 200 with an HTML page is not a queued batch."""
    _, responses = recorded
    responses["POST"] = _response(200, b"<html>gateway page</html>")

    with pytest.raises(SubmissionError, match="malformed response"):
        WalletEngine(session).submit_transaction_batch(84532, WALLET, [BatchCall(to_address=USDC, data=HexBytes("0x01"))])


@pytest.mark.parametrize("body", [[], ["q-123"], {"result": "q-123"}, "q-123"])
def test_submit_batch_unexpected_json(session, recorded, body):
    _, responses = recorded
    responses["POST"] = _response(200, body)

    with pytest.raises(SubmissionError, match="malformed response"):
        WalletEngine(session).submit_transaction_batch(84532, WALLET, [BatchCall(to_address=USDC, data=HexBytes("0x01"))])


def test_transaction_status(session, recorded):
    calls, responses = recorded
    responses["GET"] = _response(
        200,
        {
            "result": {
                "queueId": "q-123",
                "status": "mined",
                "txHash": "0xabc",
                "onchainStatus": "success",
            }
        },
    )

    status = WalletEngine(session).fetch_transaction_status("q-123")

    assert calls[0][1] == "http://localhost:3005/transaction/status/q-123"
    assert status.status == "mined"
    assert status.transaction_hash == "0xabc"
    assert status.is_onchain_success
    assert not status.is_onchain_failure


def test_transaction_status_http_error(session, recorded):
    _, responses = recorded
    responses["GET"] = _response(502, None)

    with pytest.raises(requests.HTTPError):
        WalletEngine(session).fetch_transaction_status("q-123")


def test_transaction_status_html_body(session, recorded):
    """Pollers retry on request errors, so a garbled body must be one."""
    _, responses = recorded
    responses["GET"] = _response(200, b"<html>gateway page</html>")

    with pytest.raises(requests.RequestException):
        WalletEngine(session).fetch_transaction_status("q-123")

    responses["GET"] = _response(200, [])
    with pytest.raises(requests.RequestException):
        WalletEngine(session).fetch_transaction_status("q-123")


def test_parse_transaction_status_missing_fields():
    status = parse_transaction_status("q-1", {"result": {"status": "queued", "transactionHash": ""}})
    assert status.queue_id == "q-1"
    assert status.transaction_hash is None
    assert status.onchain_status is None

    reverted = parse_transaction_status("q-1", {"result": {"status": "mined", "onchainStatus": "reverted", "errorMessage": "boom"}})
    assert reverted.is_onchain_failure
    assert reverted.error_message == "boom"


def test_token_balance(session, recorded):
    calls, responses = recorded
    responses["GET"] = _response(
        200,
        {"result": {"value": "12500000", "decimals": 6, "displayValue": "12.5", "symbol": "USDC", "name": "USD Coin"}},
    )

    balance = WalletEngine(session).fetch_token_balance(84532, USDC, WALLET)

    assert calls[0][1] == f"http://localhost:3005/contract/84532/{USDC}/erc20/balance-of"
    assert calls[0][2]["params"] == {"wallet_address": WALLET}
    assert balance.value == 12_500_000
    assert balance.display_value == Decimal("12.5")
    assert balance.symbol == "USDC"


def test_create_backend_wallet(session, recorded):
    calls, responses = recorded
    responses["POST"] = _response(200, {"result": {"walletAddress": WALLET, "status": "success"}})

    address = WalletEngine(session).create_backend_wallet("payroll-treasury", credential_id="cred-1")

    assert address == WALLET
    _, url, kwargs = calls[0]
    assert url == "http://localhost:3005/backend-wallet/create"
    assert kwargs["json"] == {"type": "smart:circle", "label": "payroll-treasury", "isTestnet": "true", "credentialId": "cred-1"}


def test_token_balance_missing_fields(session, recorded):
    _, responses = recorded
    responses["GET"] = _response(200, {"result": {"value": "12500000"}})

    with pytest.raises(requests.RequestException):
        WalletEngine(session).fetch_token_balance(84532, USDC, WALLET)


@pytest.mark.parametrize("body", [b"<html>gateway page</html>", {"result": {"status": "success"}}, {"result": None}])
def test_create_backend_wallet_malformed(session, recorded, body):
    _, responses = recorded
    responses["POST"] = _response(200, body)

    with pytest.raises(SubmissionError, match="malformed response"):
        WalletEngine(session).create_backend_wallet("payroll-treasury")


def test_create_backend_wallet_unreachable(session, recorded):
    _, responses = recorded
    responses["POST"] = requests.ConnectionError("Connection refused")

    with pytest.raises(SubmissionError, match="unreachable"):
        WalletEngine(session).create_backend_wallet("payroll-treasury")


def test_usdc_balances_on_every_chain():
    engine = FakeWalletEngine()
    engine.set_balance(84532, WALLET, 12_500_000)
    engine.set_balance(43113, WALLET, 1)

    balances = fetch_usdc_balances(engine, WALLET)

    assert list(balances) == list(CCTP_CHAINS)
    assert balances["base-sepolia"].display_value == Decimal("12.5")
    assert balances["avalanche-fuji"].value == 1
    assert balances["ethereum-sepolia"].value == 0


def test_usdc_balances_failed_chain(monkeypatch):
    """One failing balance read does not hide the other chains."""
    engine = FakeWalletEngine()
    engine.set_balance(84532, WALLET, 5_000_000)
    fetch = engine.fetch_token_balance

    def flaky_fetch(chain_id, token, wallet_address):
        if chain_id == 43113:
            raise requests.ConnectionError("RPC down")
        return fetch(chain_id, token, wallet_address)

    monkeypatch.setattr(engine, "fetch_token_balance", flaky_fetch)

    balances = fetch_usdc_balances(engine, WALLET, chains=[CCTP_CHAINS["avalanche-fuji"], CCTP_CHAINS["base-sepolia"]])

    assert list(balances) == ["avalanche-fuji", "base-sepolia"]
    assert balances["avalanche-fuji"] is None
    assert balances["base-sepolia"].value == 5_000_000
