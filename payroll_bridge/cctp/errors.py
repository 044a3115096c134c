"""Failure kinds for CCTP transfers.

Every poller and submitter either returns a value or raises
a subclass of :py:class:`CCTPTransferError`. The orchestrator
attaches the message and :py:class:`FailureKind` to the failed
transfer and recipient states.
"""

import enum


class FailureKind(enum.Enum):
    """Classification of a terminal transfer failure."""

    #: Unknown chain key or similar static configuration problem
    configuration = "configuration"

    #: Wallet engine rejected the batch
    submission = "submission"

    #: Transaction mined but reverted, or engine reported failure
    onchain_failure = "onchain_failure"

    #: A stage ran out of its wall-clock budget
    polling_timeout = "polling_timeout"

    #: Mint kept hitting nonce/bundler errors until retries ran out
    transient_receipt_failure = "transient_receipt_failure"

    #: Cooperative abort requested by the caller
    cancelled = "cancelled"


class CCTPTransferError(Exception):
    """Base class for all typed transfer failures."""

    kind: FailureKind = FailureKind.submission


class ConfigurationError(CCTPTransferError, ValueError):
    """Chain key not present in the chain table."""

    kind = FailureKind.configuration


class SubmissionError(CCTPTransferError):
    """Wallet engine refused or could not accept a transaction batch."""

    kind = FailureKind.submission


class OnchainFailure(CCTPTransferError):
    """Transaction failed on chain, or the engine reported it failed.

    :param detail:
        Error message embedded in the engine status response, if any.
    """

    kind = FailureKind.onchain_failure

    def __init__(self, message: str, detail: str | None = None):
        super().__init__(message)
        self.detail = detail


class UnknownTransactionStatus(OnchainFailure):
    """Engine returned a status value we do not know how to handle."""


class PollingTimeout(CCTPTransferError, TimeoutError):
    """A polling stage exceeded its wall-clock budget.

    Distinct from :py:class:`OnchainFailure`: the operation may still
    complete later, so callers can offer to check back.
    """

    kind = FailureKind.polling_timeout


class TransientReceiptFailure(CCTPTransferError):
    """Mint batch kept failing with a retryable error until attempts ran out."""

    kind = FailureKind.transient_receipt_failure

    def __init__(self, message: str, attempts: int = 0, last_error: Exception | None = None):
        super().__init__(message)
        self.attempts = attempts
        self.last_error = last_error


class Cancelled(CCTPTransferError):
    """Polling aborted because the cancel check returned ``False``."""

    kind = FailureKind.cancelled
