"""HTTP retry policy that tells what it is doing."""

import logging

from urllib3.util.retry import Retry


class LoggingRetry(Retry):
    """urllib3 :py:class:`~urllib3.util.retry.Retry` that logs every retry at warning level.

    Silent retries make a slow wallet engine look like a hung process.
    """

    def __init__(self, *args, logger: logging.Logger | None = None, **kwargs):
        self.logger = logger or logging.getLogger(__name__)
        super().__init__(*args, **kwargs)

    def new(self, **kw) -> "LoggingRetry":
        # Retry.new() rebuilds the object from its known params only
        retry = super().new(**kw)
        retry.logger = self.logger
        return retry

    def increment(self, method=None, url=None, response=None, error=None, _pool=None, _stacktrace=None):
        self.logger.warning(
            "Retrying %s %s, status: %s, error: %s, retries left: %s",
            method,
            url,
            response.status if response is not None else None,
            error,
            self.total,
        )
        return super().increment(
            method=method,
            url=url,
            response=response,
            error=error,
            _pool=_pool,
            _stacktrace=_stacktrace,
        )
