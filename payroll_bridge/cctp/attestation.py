"""Circle CCTP V2 attestation service client.

Poll Circle's Iris API for the attestations needed to mint on
the destination chains.

A payroll burn batch calls ``depositForBurn()`` once per recipient, so
one burn transaction emits several CCTP messages. Iris returns them
as a list in emission order, which is the order the burn calls were
submitted in. Minting needs *every* message signed, so the poller only
returns when all of them are.

The messages go through these Iris API statuses:

- **404** - transaction not yet indexed by Circle
- **pending_confirmations** - burn detected, waiting for block finality
- **complete** - attestation signed and ready

Example::

    from payroll_bridge.cctp.attestation import IrisAttestationService, wait_for_attestations

    iris = IrisAttestationService()
    attestations = wait_for_attestations(
        iris,
        source_domain=0,
        transaction_hash="0x...",
    )

    # attestations[i] pairs with the i-th depositForBurn() in the batch
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable

import requests

from payroll_bridge.cctp.constants import ATTESTATION_PENDING, CCTP_CHAINS, CCTP_DOMAIN_TO_CHAIN, IRIS_API_SANDBOX_URL
from payroll_bridge.cctp.errors import Cancelled, OnchainFailure, PollingTimeout
from payroll_bridge.cctp.transaction_status import CancelCheck

logger = logging.getLogger(__name__)

#: HTTP 404 status code indicating resource not found
HTTP_NOT_FOUND = 404


@dataclass(slots=True)
class CCTPAttestation:
    """Attestation data for one CCTP burn message.

    Contains the signed message and attestation needed to call
    ``receiveMessage()`` on the destination chain's MessageTransmitterV2.
    """

    #: The CCTP message bytes to relay to the destination chain
    message: bytes

    #: The signed attestation bytes from Circle's Iris service
    attestation: bytes

    #: Status from Iris API (e.g. ``"complete"``)
    status: str


@dataclass(slots=True)
class AttestationPollingConfig:
    """Timing for Iris polling.

    Finality on some source chains takes tens of minutes, and Iris
    can lag behind that, so the default budget is hours.
    """

    #: Seconds between polls, also the backoff after a failed request
    poll_interval: float = 10.0

    #: Wall-clock budget in seconds
    timeout: float = 3 * 3600.0

    @classmethod
    def create_test_config(cls) -> "AttestationPollingConfig":
        """No delays, short timeout."""
        return cls(poll_interval=0.0, timeout=5.0)


#: Default production polling configuration
DEFAULT_ATTESTATION_POLLING_CONFIG = AttestationPollingConfig()


class IrisAttestationService:
    """Circle Iris ``/v2/messages`` endpoint."""

    def __init__(
        self,
        session: requests.Session | None = None,
        api_url: str = IRIS_API_SANDBOX_URL,
        api_key: str | None = None,
        timeout: float = 30.0,
    ):
        """
        :param session:
            HTTP session. A plain one is created when not given.

        :param api_url:
            Iris base URL, sandbox for testnets.

        :param api_key:
            Optional Circle API key sent as bearer token.
        """
        self.session = session or requests.Session()
        self.api_url = api_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout

    def __repr__(self) -> str:
        return f"<IrisAttestationService {self.api_url}>"

    def fetch_messages(self, source_domain: int, transaction_hash: str) -> list[dict] | None:
        """One-shot query of the messages a burn transaction emitted.

        :return:
            Raw message dicts in emission order, or ``None`` if Iris
            has not indexed the transaction yet (HTTP 404).

        :raise requests.HTTPError:
            On other error responses.

        :raise requests.exceptions.InvalidJSONError:
            If the body is not a ``messages`` list of objects.
        """
        url = f"{self.api_url}/v2/messages/{source_domain}?transactionHash={transaction_hash}"
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else None
        response = self.session.get(url, headers=headers, timeout=self.timeout)
        if response.status_code == HTTP_NOT_FOUND:
            return None
        response.raise_for_status()
        data = response.json()
        messages = data.get("messages", []) if isinstance(data, dict) else None
        if not isinstance(messages, list) or not all(isinstance(m, dict) for m in messages):
            raise requests.exceptions.InvalidJSONError(f"Unexpected Iris response for tx {transaction_hash}: {response.text[:200]}", response=response)
        return messages


def _decode_hex(value) -> bytes | None:
    """Decode a ``0x`` hex string, ``None`` if it is not one."""
    if not isinstance(value, str):
        return None
    try:
        return bytes.fromhex(value.removeprefix("0x"))
    except ValueError:
        return None


def is_message_ready(msg: dict) -> bool:
    """Has Iris signed this message.

    Garbled hex in either field counts as not signed yet.
    """
    attestation_hex = msg.get("attestation")
    if msg.get("status") != "complete" or not attestation_hex or attestation_hex == ATTESTATION_PENDING:
        return False
    return bool(_decode_hex(attestation_hex)) and bool(_decode_hex(msg.get("message")))


def parse_complete_attestations(messages: list[dict]) -> list[CCTPAttestation] | None:
    """Convert Iris messages to attestations if every one of them is signed.

    :return:
        Attestations in emission order, or ``None`` if the list is empty
        or any message is still pending. Never a partially signed list.
    """
    if not messages or not all(is_message_ready(m) for m in messages):
        return None

    return [
        CCTPAttestation(
            message=_decode_hex(m["message"]),
            attestation=_decode_hex(m["attestation"]),
            status=m["status"],
        )
        for m in messages
    ]


def wait_for_attestations(
    iris: IrisAttestationService,
    source_domain: int,
    transaction_hash: str,
    config: AttestationPollingConfig | None = None,
    cancel_check: CancelCheck | None = None,
    expected_count: int | None = None,
    on_phase_change: Callable[[str, int], None] | None = None,
) -> list[CCTPAttestation]:
    """Poll the Iris API until every message of a burn transaction is signed.

    Request errors and Iris server errors are treated as transient:
    back off and retry. Only the timeout or ``cancel_check`` stops the loop.

    :param iris:
        Attestation service client.

    :param source_domain:
        CCTP domain ID of the source chain (e.g. 0 for Ethereum).

    :param transaction_hash:
        Transaction hash of the burn batch on the source chain.

    :param config:
        Poll interval and timeout. Uses :py:data:`DEFAULT_ATTESTATION_POLLING_CONFIG` when ``None``.

    :param cancel_check:
        Consulted once per iteration. Returning ``False`` aborts the wait.

    :param expected_count:
        Number of ``depositForBurn()`` calls in the batch.
        Fewer messages means Iris has not indexed them all yet.

    :param on_phase_change:
        Optional callback invoked on every poll attempt.
        Receives ``(status, attempt)`` where *status* is one of
        ``"waiting_for_indexing"``, ``"pending_confirmations"``, or
        ``"complete"`` and *attempt* is the 1-based poll count.

    :return:
        One :class:`CCTPAttestation` per message, in the order the burn calls were submitted.

    :raise PollingTimeout:
        If attestations are not ready within the timeout.

    :raise OnchainFailure:
        If the transaction emitted more messages than ``expected_count``.

    :raise Cancelled:
        ``cancel_check`` returned ``False``.
    """
    if config is None:
        config = DEFAULT_ATTESTATION_POLLING_CONFIG

    # Iris API requires 0x-prefixed transaction hash
    if not transaction_hash.startswith("0x"):
        transaction_hash = f"0x{transaction_hash}"

    chain_key = CCTP_DOMAIN_TO_CHAIN.get(source_domain)
    domain_name = chain_key or f"domain-{source_domain}"
    explorer_suffix = f"\n  Explorer: {CCTP_CHAINS[chain_key].explorer_url}/tx/{transaction_hash}" if chain_key else ""
    logger.info(
        "Waiting for CCTP attestations on %s: tx=%s, expected messages=%s%s",
        domain_name,
        transaction_hash,
        expected_count or "any",
        explorer_suffix,
    )

    start_time = time.time()
    attempt = 0
    last_phase = None

    def _notify(phase: str):
        nonlocal last_phase
        last_phase = phase
        if on_phase_change is not None:
            on_phase_change(phase, attempt)

    while True:
        elapsed = time.time() - start_time
        if elapsed >= config.timeout:
            raise PollingTimeout(f"CCTP attestations not ready after {config.timeout}s for tx {transaction_hash} on {domain_name}, last status: {last_phase or 'unknown'}")

        if cancel_check is not None and not cancel_check():
            raise Cancelled(f"Cancelled while waiting for attestations of tx {transaction_hash}")

        attempt += 1
        # Log first attempt at INFO so the user sees the poll started
        log_level = logging.INFO if attempt == 1 else logging.DEBUG
        logger.log(
            log_level,
            "Polling CCTP attestations: %s, tx=%s, attempt=%d, elapsed=%.1fs, status=%s",
            domain_name,
            transaction_hash,
            attempt,
            elapsed,
            last_phase or "unknown",
        )

        try:
            messages = iris.fetch_messages(source_domain, transaction_hash)
        except requests.RequestException as e:
            logger.warning("Iris request failed for tx %s, retrying in %.1fs: %s", transaction_hash, config.poll_interval, e)
            time.sleep(config.poll_interval)
            continue

        if messages is None:
            _notify("waiting_for_indexing")
            logger.debug("Attestation not yet indexed (404) for %s, retrying...", domain_name)
            time.sleep(config.poll_interval)
            continue

        if expected_count is not None and len(messages) > expected_count:
            raise OnchainFailure(f"Burn tx {transaction_hash} emitted {len(messages)} CCTP messages, expected {expected_count}")

        attestations = parse_complete_attestations(messages)
        if attestations is not None and (expected_count is None or len(attestations) == expected_count):
            _notify("complete")
            logger.info(
                "All %d attestations complete for %s after %d attempts (%.1fs): tx=%s",
                len(attestations),
                domain_name,
                attempt,
                elapsed,
                transaction_hash,
            )
            return attestations

        ready = sum(1 for m in messages if is_message_ready(m))
        _notify("pending_confirmations" if messages else "waiting_for_indexing")
        logger.debug("Attestations for %s: %d/%d messages signed (waiting for all)", domain_name, ready, expected_count or len(messages))
        time.sleep(config.poll_interval)
