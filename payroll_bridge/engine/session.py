"""HTTP session management for the backend wallet engine.

This module provides session creation with retry logic and rate limiting
for wallet engine requests.

The :py:class:`EngineSession` carries the engine URL so that
:py:class:`~payroll_bridge.engine.api.WalletEngine` does not need
a separate ``api_url`` argument.

Only idempotent methods are retried at HTTP level. Batch submission
is a ``POST`` and retrying it blindly could submit the same burn twice,
so the mint retry loop in :py:mod:`payroll_bridge.cctp.receive`
decides about resubmission instead.
"""

import logging
from pathlib import Path

from pyrate_limiter import SQLiteBucket
from requests import Session
from requests_ratelimiter import LimiterAdapter

from payroll_bridge.logging_retry import LoggingRetry

logger = logging.getLogger(__name__)

#: Default self-hosted wallet engine URL.
DEFAULT_ENGINE_URL: str = "http://localhost:3005"

#: Default number of retries for API requests
DEFAULT_RETRIES = 5

#: Default backoff factor for retries (seconds)
DEFAULT_BACKOFF_FACTOR = 0.5

#: Default rate limit for wallet engine requests per second.
#:
#: Status polling for several destination chains at once stays well under this.
DEFAULT_REQUESTS_PER_SECOND = 10.0


class EngineSession(Session):
    """A :py:class:`requests.Session` subclass that carries the wallet engine URL.

    Use :py:func:`create_engine_session` to create instances.
    """

    #: Wallet engine base URL (e.g. ``http://localhost:3005``).
    api_url: str

    def __init__(self, api_url: str = DEFAULT_ENGINE_URL):
        super().__init__()
        self.api_url = api_url.rstrip("/")

    def __repr__(self) -> str:
        return f"<EngineSession api_url={self.api_url!r}>"


def create_engine_session(
    api_url: str = DEFAULT_ENGINE_URL,
    access_token: str | None = None,
    retries: int = DEFAULT_RETRIES,
    backoff_factor: float = DEFAULT_BACKOFF_FACTOR,
    requests_per_second: float = DEFAULT_REQUESTS_PER_SECOND,
    pool_maxsize: int = 32,
    rate_limit_db_path: Path | None = None,
) -> EngineSession:
    """Create a :py:class:`EngineSession` configured for the wallet engine.

    The session is configured with:

    - The engine URL stored in :py:attr:`EngineSession.api_url`
    - ``Authorization: Bearer`` header when ``access_token`` is given
    - Rate limiting to respect engine throttling
    - Retry logic for transient HTTP errors using exponential backoff

    Example::

        from payroll_bridge.engine.session import create_engine_session

        session = create_engine_session(
            api_url="http://localhost:3005",
            access_token=os.environ["ENGINE_ACCESS_TOKEN"],
        )

    :param api_url:
        Wallet engine base URL.
    :param access_token:
        Engine access token.
    :param retries:
        Maximum number of retry attempts for failed requests
    :param backoff_factor:
        Backoff factor for exponential retry delays
    :param requests_per_second:
        Maximum requests per second.
    :param pool_maxsize:
        Maximum number of connections to keep in the connection pool.
        Should be at least the number of destination chains minted in parallel.
    :param rate_limit_db_path:
        Store rate limit state in this SQLite file, so that several
        processes polling the same engine share the budget.
        In-memory when not given.
    :return:
        Configured :py:class:`EngineSession` with rate limiting and retry logic
    """
    session = EngineSession(api_url=api_url)

    if access_token:
        session.headers["Authorization"] = f"Bearer {access_token}"

    retry_policy = LoggingRetry(
        total=retries,
        backoff_factor=backoff_factor,
        status_forcelist=[429, 500, 502, 503, 504],
        respect_retry_after_header=True,
        logger=logger,
    )

    limiter_kwargs = {}
    if rate_limit_db_path is not None:
        rate_limit_db_path.parent.mkdir(parents=True, exist_ok=True)
        limiter_kwargs = {
            "bucket_class": SQLiteBucket,
            "bucket_kwargs": {"path": str(rate_limit_db_path)},
        }

    adapter = LimiterAdapter(
        per_second=requests_per_second,
        max_retries=retry_policy,
        pool_connections=pool_maxsize,
        pool_maxsize=pool_maxsize,
        **limiter_kwargs,
    )
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    logger.debug("Created %r", session)
    return session
