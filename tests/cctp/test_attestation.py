"""Iris attestation polling."""

import json

import pytest
import requests

from payroll_bridge.cctp.attestation import (
    IrisAttestationService,
    is_message_ready,
    parse_complete_attestations,
    wait_for_attestations,
)
from payroll_bridge.cctp.errors import Cancelled, FailureKind, OnchainFailure, PollingTimeout
from payroll_bridge.cctp.testing import FakeIrisAttestationService, complete_messages, iris_message

BURN_TX = "0x" + "ab" * 32


def _response(status_code: int, body=None) -> requests.Response:
    response = requests.Response()
    response.status_code = status_code
    response._content = json.dumps(body if body is not None else {}).encode()
    response.url = "https://iris-api-sandbox.circle.com/v2/messages/0"
    return response


class RecordingSession:
    """Returns one canned response and remembers what was asked."""

    def __init__(self, response: requests.Response):
        self.response = response
        self.calls = []

    def get(self, url, headers=None, timeout=None):
        self.calls.append((url, headers))
        return self.response


def test_message_readiness():
    assert is_message_ready(iris_message(0))
    assert not is_message_ready(iris_message(0, status="pending_confirmations"))
    assert not is_message_ready(iris_message(0, signed=False))
    assert not is_message_ready({"status": "complete", "attestation": ""})
    assert not is_message_ready({**iris_message(0), "attestation": "0xnot-hex"})
    assert not is_message_ready({**iris_message(0), "message": None})
    assert not is_message_ready({"status": "complete", "attestation": "0x" + "01" * 65})


def test_partially_signed_list_is_never_returned():
    messages = [iris_message(0), iris_message(1, status="pending_confirmations", signed=False)]
    assert parse_complete_attestations(messages) is None
    assert parse_complete_attestations([]) is None


def test_parse_complete_attestations():
    attestations = parse_complete_attestations(complete_messages(2))
    assert len(attestations) == 2
    assert attestations[0].message == b"\x01" + b"\x00\x00\x00\x00" * 8
    assert attestations[1].message == b"\x01" + b"\x00\x00\x00\x01" * 8
    assert attestations[1].attestation == b"\x01" * 65
    assert attestations[0].status == "complete"


def test_wait_through_indexing_and_confirmations(attestation_polling):
    """404 → pending → all signed."""
    iris = FakeIrisAttestationService()
    iris.script(
        BURN_TX,
        [
            None,
            None,
            [iris_message(0, status="pending_confirmations", signed=False), iris_message(1, status="pending_confirmations", signed=False)],
            [iris_message(0), iris_message(1, status="pending_confirmations", signed=False)],
            complete_messages(2),
        ],
    )
    phases = []

    attestations = wait_for_attestations(
        iris,
        source_domain=0,
        transaction_hash=BURN_TX,
        config=attestation_polling,
        expected_count=2,
        on_phase_change=lambda phase, attempt: phases.append((phase, attempt)),
    )

    assert len(attestations) == 2
    assert phases == [
        ("waiting_for_indexing", 1),
        ("waiting_for_indexing", 2),
        ("pending_confirmations", 3),
        ("pending_confirmations", 4),
        ("complete", 5),
    ]


def test_waits_for_all_expected_messages(attestation_polling):
    """Iris may index some burn messages of a batch before others."""
    iris = FakeIrisAttestationService()
    iris.script(BURN_TX, [complete_messages(1), complete_messages(3)])

    attestations = wait_for_attestations(iris, 0, BURN_TX, attestation_polling, expected_count=3)
    assert len(attestations) == 3
    assert len(iris.requests) == 2


def test_too_many_messages(attestation_polling):
    iris = FakeIrisAttestationService(default_responses=[complete_messages(3)])
    with pytest.raises(OnchainFailure, match="emitted 3 CCTP messages, expected 2"):
        wait_for_attestations(iris, 0, BURN_TX, attestation_polling, expected_count=2)


def test_never_signed_times_out(short_attestation_polling):
    """A message stuck unsigned ends in a timeout, never a partial list."""
    iris = FakeIrisAttestationService(default_responses=[[iris_message(0), iris_message(1, signed=False)]])
    with pytest.raises(PollingTimeout) as exc_info:
        wait_for_attestations(iris, 0, BURN_TX, short_attestation_polling, expected_count=2)

    assert exc_info.value.kind == FailureKind.polling_timeout
    assert "pending_confirmations" in str(exc_info.value)


def test_iris_errors_are_transient(attestation_polling):
    iris = FakeIrisAttestationService()
    iris.script(
        BURN_TX,
        [
            requests.HTTPError("503 Server Error: Service Unavailable"),
            requests.ConnectionError("Connection aborted"),
            complete_messages(1),
        ],
    )
    attestations = wait_for_attestations(iris, 0, BURN_TX, attestation_polling, expected_count=1)
    assert len(attestations) == 1
    assert len(iris.requests) == 3


def test_hash_gets_0x_prefix(attestation_polling):
    iris = FakeIrisAttestationService(default_responses=[complete_messages(1)])
    wait_for_attestations(iris, 6, BURN_TX[2:], attestation_polling)
    assert iris.requests == [(6, BURN_TX)]


def test_cancel(attestation_polling):
    iris = FakeIrisAttestationService()
    with pytest.raises(Cancelled):
        wait_for_attestations(iris, 0, BURN_TX, attestation_polling, cancel_check=lambda: False)
    assert iris.requests == []


def test_fetch_messages_not_indexed():
    session = RecordingSession(_response(404, {"error": "Message hash not found"}))
    iris = IrisAttestationService(session=session, api_key="secret")

    assert iris.fetch_messages(0, BURN_TX) is None
    url, headers = session.calls[0]
    assert url == f"https://iris-api-sandbox.circle.com/v2/messages/0?transactionHash={BURN_TX}"
    assert headers == {"Authorization": "Bearer secret"}


def test_fetch_messages():
    session = RecordingSession(_response(200, {"messages": complete_messages(2)}))
    iris = IrisAttestationService(session=session, api_url="https://iris-api.circle.com/")

    messages = iris.fetch_messages(6, BURN_TX)
    assert messages == complete_messages(2)
    assert session.calls[0][0].startswith("https://iris-api.circle.com/v2/messages/6?")
    assert session.calls[0][1] is None


def test_fetch_messages_server_error():
    session = RecordingSession(_response(500))
    iris = IrisAttestationService(session=session)
    with pytest.raises(requests.HTTPError):
        iris.fetch_messages(0, BURN_TX)


@pytest.mark.parametrize("body", [[], {"messages": "none"}, {"messages": ["0xabc"]}])
def test_fetch_messages_unexpected_body(body):
    iris = IrisAttestationService(session=RecordingSession(_response(200, body)))
    with pytest.raises(requests.RequestException):
        iris.fetch_messages(0, BURN_TX)


def test_fetch_messages_without_messages_key():
    iris = IrisAttestationService(session=RecordingSession(_response(200, {})))
    assert iris.fetch_messages(0, BURN_TX) == []


def test_unexpected_body_is_retried_until_timeout(short_attestation_polling):
    """A garbled Iris body is retried like any other request error."""
    session = RecordingSession(_response(200, []))
    iris = IrisAttestationService(session=session)

    with pytest.raises(PollingTimeout):
        wait_for_attestations(iris, 0, BURN_TX, short_attestation_polling, expected_count=1)

    assert len(session.calls) >= 1


def test_garbled_attestation_is_not_ready(short_attestation_polling):
    iris = FakeIrisAttestationService(default_responses=[[{**iris_message(0), "attestation": "0xzz"}]])
    with pytest.raises(PollingTimeout):
        wait_for_attestations(iris, 0, BURN_TX, short_attestation_polling, expected_count=1)
