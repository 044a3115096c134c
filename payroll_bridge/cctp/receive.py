"""Mint on the destination chain with ``receiveMessage()``.

All attestations for one destination chain go into one atomic
batch of ``receiveMessage()`` calls, the mint-side mirror of
the burn batch.

The destination step fails transiently far more often than the burn:
the smart-account nonce seen by the engine's signers can lag behind
after a previous batch from the same wallet, and the bundler can time
out. So unlike the burn, submission + confirmation is wrapped in a
bounded retry loop with exponential backoff. Errors that do not look
transient are raised immediately.
"""

import logging
import time
from dataclasses import dataclass

from eth_typing import HexAddress

from payroll_bridge.cctp.attestation import CCTPAttestation
from payroll_bridge.cctp.calls import BatchCall, encode_receive_message
from payroll_bridge.cctp.constants import ChainEndpoint, get_chain_endpoint
from payroll_bridge.cctp.errors import (
    Cancelled,
    CCTPTransferError,
    OnchainFailure,
    PollingTimeout,
    SubmissionError,
    TransientReceiptFailure,
)
from payroll_bridge.cctp.transaction_status import CancelCheck, TransactionPollingConfig, wait_for_transaction
from payroll_bridge.engine.api import WalletEngine

logger = logging.getLogger(__name__)

#: Lowercase error message fragments that mean "try the mint again".
#:
#: Nonce desync between the engine's signer processes, and bundler timeouts.
TRANSIENT_RECEIVE_ERROR_SIGNATURES = (
    "invalid account nonce",
    "nonce too low",
    "nonce has already been used",
    "bundler",
)


@dataclass(slots=True)
class ReceiveRetryConfig:
    """Retry behaviour for the mint batch.

    Example:

    .. code-block:: python

        # Production (default)
        config = ReceiveRetryConfig()

        # Fast-fail for tests
        config = ReceiveRetryConfig.create_test_config()
    """

    #: Total submission attempts, including the first one
    max_attempts: int = 3

    #: Delay in seconds before the second attempt
    initial_delay: float = 5.0

    #: Multiplier applied to delay after each failed attempt
    backoff_multiplier: float = 2.0

    #: Maximum delay cap in seconds
    max_delay: float = 60.0

    #: Seconds to wait after a confirmed mint before returning,
    #: so the wallet nonce converges across the engine's signers
    #: before the same wallet is used again
    post_success_delay: float = 5.0

    @classmethod
    def create_test_config(cls) -> "ReceiveRetryConfig":
        """Same attempt count, no delays."""
        return cls(
            max_attempts=3,
            initial_delay=0.0,
            backoff_multiplier=2.0,
            max_delay=0.0,
            post_success_delay=0.0,
        )


#: Default production retry configuration
DEFAULT_RECEIVE_RETRY_CONFIG = ReceiveRetryConfig()


def is_transient_receive_error(error: Exception) -> bool:
    """Should a failed mint attempt be retried."""
    if isinstance(error, PollingTimeout):
        return True
    if isinstance(error, (SubmissionError, OnchainFailure)):
        text = str(error).lower()
        return any(signature in text for signature in TRANSIENT_RECEIVE_ERROR_SIGNATURES)
    return False


def build_receive_calls(destination: ChainEndpoint, attestations: list[CCTPAttestation]) -> list[BatchCall]:
    """One ``receiveMessage()`` call per attestation, same order."""
    if not attestations:
        raise ValueError(f"No attestations to receive on {destination.chain_key}")
    return [
        BatchCall(
            to_address=destination.message_transmitter,
            data=encode_receive_message(a.message, a.attestation),
        )
        for a in attestations
    ]


def submit_receipt(
    engine: WalletEngine,
    destination_chain: str,
    initiator_address: HexAddress | str,
    attestations: list[CCTPAttestation],
    cancel_check: CancelCheck | None = None,
    retry_config: ReceiveRetryConfig | None = None,
    polling_config: TransactionPollingConfig | None = None,
) -> str:
    """Mint on a destination chain and wait for confirmation.

    Retry flow:

    1. Submit the ``receiveMessage()`` batch and poll its status
    2. On a nonce, bundler or polling timeout error, wait and go to 1,
       doubling the wait each time up to ``max_delay``
    3. Give up after ``max_attempts``

    Any other error is raised as is.

    :param engine:
        Wallet engine client.

    :param destination_chain:
        Chain key to mint on.

    :param initiator_address:
        Backend wallet that relays the messages. Anyone can relay.

    :param attestations:
        Signed messages destined for this chain.

    :param cancel_check:
        Checked before every attempt and during status polling.

    :param retry_config:
        Uses :py:data:`DEFAULT_RECEIVE_RETRY_CONFIG` when ``None``.

    :param polling_config:
        Status polling timing for each attempt.

    :return:
        Mint transaction hash.

    :raise TransientReceiptFailure:
        Retries ran out on nonce or bundler errors.

    :raise PollingTimeout:
        Retries ran out and the last attempt timed out.
    """
    if retry_config is None:
        retry_config = DEFAULT_RECEIVE_RETRY_CONFIG

    assert retry_config.max_attempts >= 1, f"Need at least one attempt, got {retry_config.max_attempts}"

    destination = get_chain_endpoint(destination_chain)
    calls = build_receive_calls(destination, attestations)

    delay = retry_config.initial_delay
    last_error: CCTPTransferError | None = None

    for attempt in range(1, retry_config.max_attempts + 1):
        if cancel_check is not None and not cancel_check():
            raise Cancelled(f"Cancelled before mint attempt {attempt} on {destination.chain_key}")

        logger.info(
            "Receiving %d CCTP messages on %s, attempt %d/%d",
            len(calls),
            destination.chain_key,
            attempt,
            retry_config.max_attempts,
        )

        try:
            queue_id = engine.submit_transaction_batch(destination.chain_id, initiator_address, calls)
            tx_hash = wait_for_transaction(engine, queue_id, polling_config, cancel_check)
        except CCTPTransferError as e:
            if not is_transient_receive_error(e):
                raise
            last_error = e
            if attempt < retry_config.max_attempts:
                logger.warning(
                    "Mint on %s attempt %d/%d failed: %s. Retrying in %.1fs",
                    destination.chain_key,
                    attempt,
                    retry_config.max_attempts,
                    e,
                    delay,
                )
                time.sleep(delay)
                delay = min(delay * retry_config.backoff_multiplier, retry_config.max_delay)
            else:
                logger.warning(
                    "Mint on %s failed after %d attempts: %s",
                    destination.chain_key,
                    retry_config.max_attempts,
                    e,
                )
            continue

        logger.info("CCTP receive confirmed on %s: %s", destination.chain_key, tx_hash)
        time.sleep(retry_config.post_success_delay)
        return tx_hash

    message = f"Mint on {destination.chain_key} failed after {retry_config.max_attempts} attempts. Last error: {last_error}"
    if isinstance(last_error, PollingTimeout):
        raise PollingTimeout(message) from last_error
    raise TransientReceiptFailure(message, attempts=retry_config.max_attempts, last_error=last_error) from last_error
