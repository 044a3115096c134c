"""Bunch of random utilities."""

import logging
import os
from decimal import Decimal
from pathlib import Path

import coloredlogs

logger = logging.getLogger(__name__)


def to_raw_amount(amount: Decimal | int | str, decimals: int) -> int:
    """Convert a human-readable token amount to raw integer units.

    Exact: never goes through ``float``.

    Example:

    .. code-block:: python

        assert to_raw_amount(Decimal("1.5"), 6) == 1_500_000

    :param amount:
        Amount as :py:class:`~decimal.Decimal`, ``int`` or decimal string.

    :param decimals:
        Token decimals, 6 for USDC.

    :raise ValueError:
        If the amount has more precision than the token supports.
    """
    assert not isinstance(amount, float), f"Never pass floats as token amounts, got {amount}"
    value = Decimal(amount).scaleb(decimals)
    if value != value.to_integral_value():
        raise ValueError(f"Amount {amount} has more than {decimals} decimals")
    return int(value)


def from_raw_amount(raw: int, decimals: int) -> Decimal:
    """Convert raw integer token units to a human-readable :py:class:`~decimal.Decimal`."""
    return Decimal(raw).scaleb(-decimals)


class ThreadColourFormatter(logging.Formatter):
    """Log formatter that assigns a unique ANSI colour to each thread name.

    Destination chain groups mint in parallel threads named
    ``cctp-receive-<chain>``, and colouring the thread name keeps
    interleaved log lines readable.

    Wraps the formatter installed by ``coloredlogs`` and swaps
    the plain thread name for a coloured one.
    """

    _PALETTE = [
        "\033[1;36m",  # bold cyan
        "\033[1;33m",  # bold yellow
        "\033[1;35m",  # bold magenta
        "\033[1;32m",  # bold green
        "\033[1;34m",  # bold blue
        "\033[1;91m",  # bold bright red
    ]
    _RESET = "\033[0m"

    def __init__(self, inner: logging.Formatter | None = None, fmt=None, datefmt=None):
        super().__init__(fmt, datefmt)
        self._inner = inner
        self._thread_colours: dict[str, str] = {}

    def _colour_for(self, thread_name: str) -> str:
        if thread_name not in self._thread_colours:
            self._thread_colours[thread_name] = self._PALETTE[len(self._thread_colours) % len(self._PALETTE)]
        return self._thread_colours[thread_name]

    def format(self, record: logging.LogRecord) -> str:
        original_name = record.threadName
        coloured_name = f"{self._colour_for(original_name)}{original_name}{self._RESET}"

        if self._inner is not None:
            return self._inner.format(record).replace(original_name, coloured_name, 1)

        record.threadName = coloured_name
        try:
            return super().format(record)
        finally:
            record.threadName = original_name


def setup_console_logging(
    default_log_level="warning",
    log_file: Path | None = None,
    coloured_threads=False,
) -> logging.Logger:
    """Set up coloured log output for scripts.

    - Level comes from ``LOG_LEVEL`` environment variable, falling back to ``default_log_level``
    - Tune down noisy HTTP library logging

    :param log_file:
        Also write the log to this file, always at least ``INFO`` level.

    :param coloured_threads:
        Give each thread name its own colour so parallel mint
        logs are easy to follow.

    :return:
        Root logger
    """
    level = os.environ.get("LOG_LEVEL", default_log_level).upper()
    numeric_level = getattr(logging, level, None)
    assert isinstance(numeric_level, int), f"No level: {level}"

    fmt = "%(asctime)s %(name)-44s [%(threadName)s] %(message)s"
    date_fmt = "%Y-%m-%d %H:%M:%S"

    coloredlogs.install(level=numeric_level, fmt=fmt, datefmt=date_fmt)

    root = logging.getLogger()

    if coloured_threads:
        for handler in root.handlers:
            if isinstance(handler, logging.StreamHandler) and not isinstance(handler, logging.FileHandler):
                handler.setFormatter(ThreadColourFormatter(inner=handler.formatter))

    if log_file:
        assert isinstance(log_file, Path), "log_file must be a Path"
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
        file_handler.setLevel(min(logging.INFO, numeric_level))
        # File handler uses plain formatter, no ANSI codes
        file_handler.setFormatter(logging.Formatter(fmt, date_fmt))
        root.addHandler(file_handler)
        root.setLevel(min(logging.INFO, numeric_level))

    # Mute noise
    logging.getLogger("urllib3.connectionpool").setLevel(logging.WARNING)
    logging.getLogger("requests_ratelimiter").setLevel(logging.WARNING)
    return root
