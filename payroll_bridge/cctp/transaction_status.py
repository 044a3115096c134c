"""Wait for a wallet engine batch to be mined.

The wallet engine returns a queue id immediately when a batch is submitted.
The batch then goes through ``queued → submitted → sent → mined`` while
the engine's bundler gets it on chain.

A batch counts as done only when the engine reports an explicit
on-chain ``success`` *and* a transaction hash. The engine can report
``mined`` before either of them is populated, so ``mined`` alone
just means poll again.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable

import requests

from payroll_bridge.cctp.errors import Cancelled, OnchainFailure, PollingTimeout, UnknownTransactionStatus
from payroll_bridge.engine.api import FAILED_STATUSES, PENDING_STATUSES, TransactionStatus, WalletEngine

logger = logging.getLogger(__name__)

#: Return ``False`` to abort a poll loop
CancelCheck = Callable[[], bool]


@dataclass(slots=True)
class TransactionPollingConfig:
    """Timing for wallet engine status polling.

    Example:

    .. code-block:: python

        # Production (default)
        config = TransactionPollingConfig()

        # Fast-fail for tests
        config = TransactionPollingConfig.create_test_config()
    """

    #: Seconds to wait after submission before the first status query.
    #:
    #: Counts against ``timeout``.
    settle_delay: float = 2.0

    #: Seconds between status queries
    poll_interval: float = 2.0

    #: Wall-clock budget in seconds for the whole wait
    timeout: float = 30 * 60.0

    @classmethod
    def create_test_config(cls) -> "TransactionPollingConfig":
        """No delays, short timeout."""
        return cls(settle_delay=0.0, poll_interval=0.0, timeout=5.0)


#: Default production polling configuration
DEFAULT_TRANSACTION_POLLING_CONFIG = TransactionPollingConfig()


def _check_status(status: TransactionStatus) -> str | None:
    """Decide what to do with one status response.

    :return:
        Transaction hash when done, ``None`` to keep polling.

    :raise OnchainFailure:
        When the engine or the chain reports failure, or on a status we do not know.
    """
    if status.is_onchain_failure:
        raise OnchainFailure(
            f"Transaction {status.transaction_hash or '(no hash)'} for queue id {status.queue_id} failed on chain: {status.error_message or 'no error detail'}",
            detail=status.error_message,
        )

    if status.is_onchain_success and status.transaction_hash:
        return status.transaction_hash

    if status.status in FAILED_STATUSES:
        raise OnchainFailure(
            f"Wallet engine reports {status.status} for queue id {status.queue_id}: {status.error_message or 'no error detail'}",
            detail=status.error_message,
        )

    if status.status in PENDING_STATUSES or status.status == "mined":
        return None

    raise UnknownTransactionStatus(f"Unknown transaction status {status.status!r} for queue id {status.queue_id}")


def wait_for_transaction(
    engine: WalletEngine,
    queue_id: str,
    config: TransactionPollingConfig | None = None,
    cancel_check: CancelCheck | None = None,
) -> str:
    """Poll the wallet engine until a queued batch is mined and confirmed.

    Safe to call from several threads for different queue ids.

    :param engine:
        Wallet engine client.

    :param queue_id:
        Id returned by :py:meth:`~payroll_bridge.engine.api.WalletEngine.submit_transaction_batch`.

    :param config:
        Delays and timeout. Uses :py:data:`DEFAULT_TRANSACTION_POLLING_CONFIG` when ``None``.

    :param cancel_check:
        Consulted once per iteration. Returning ``False`` aborts the wait.

    :return:
        Transaction hash of the confirmed batch.

    :raise OnchainFailure:
        The batch failed, or the engine returned an unknown status.

    :raise PollingTimeout:
        Not confirmed within ``config.timeout``.

    :raise Cancelled:
        ``cancel_check`` returned ``False``.
    """
    if config is None:
        config = DEFAULT_TRANSACTION_POLLING_CONFIG

    logger.info("Waiting for wallet engine batch %s, timeout %.0fs", queue_id, config.timeout)
    start_time = time.time()

    # Freshly submitted batches are not queryable immediately
    time.sleep(config.settle_delay)

    attempt = 0
    last_status = None

    while True:
        elapsed = time.time() - start_time
        if elapsed >= config.timeout:
            raise PollingTimeout(f"Transaction for queue id {queue_id} not confirmed after {config.timeout}s, last status: {last_status or 'unknown'}")

        if cancel_check is not None and not cancel_check():
            raise Cancelled(f"Cancelled while waiting for queue id {queue_id}")

        attempt += 1
        log_level = logging.INFO if attempt == 1 else logging.DEBUG
        logger.log(log_level, "Polling transaction status: queue id %s, attempt %d, elapsed %.1fs", queue_id, attempt, elapsed)

        try:
            status = engine.fetch_transaction_status(queue_id)
        except requests.RequestException as e:
            logger.warning("Status query for queue id %s failed, retrying: %s", queue_id, e)
            time.sleep(config.poll_interval)
            continue

        if status.status != last_status:
            logger.info("Queue id %s status: %s → %s", queue_id, last_status or "initial", status.status)
            last_status = status.status

        tx_hash = _check_status(status)
        if tx_hash:
            logger.info("Queue id %s confirmed after %d attempts (%.1fs): tx %s", queue_id, attempt, elapsed, tx_hash)
            return tx_hash

        if status.status == "mined":
            logger.debug("Queue id %s mined but hash or on-chain status not yet populated", queue_id)

        time.sleep(config.poll_interval)
