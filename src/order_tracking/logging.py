import logging
import os
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Optional


_LEVELS = {
    "CRITICAL": logging.CRITICAL,
    "ERROR": logging.ERROR,
    "WARN": logging.WARNING,
    "WARNING": logging.WARNING,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
}

LOG_FORMAT = "%(asctime)s [%(name)s]%(log_context)s %(levelname)s: %(message)s"

# "batch 1a2b3c/label-1.jpg" while a batch works on an image
_CONTEXT: ContextVar[str] = ContextVar("order_tracking_log_context", default="")


def _coerce_level(value: Optional[str]) -> int:
    if isinstance(value, str):
        return _LEVELS.get(value.upper().strip(), logging.INFO)
    if isinstance(value, int):
        return value
    return logging.INFO


class BatchContextFilter(logging.Filter):
    """Stamp each record with the active batch/image label (empty outside a batch)."""

    def filter(self, record: logging.LogRecord) -> bool:
        label = _CONTEXT.get()
        record.log_context = f" <{label}>" if label else ""
        return True


@contextmanager
def log_context(label: str) -> Iterator[None]:
    """Append `label` to the context shown on every log line inside the block.

    Nested blocks join with "/", so an image inside a batch reads
    `<batch 1a2b3c/label-1.jpg>`.
    """
    current = _CONTEXT.get()
    token = _CONTEXT.set(f"{current}/{label}" if current else label)
    try:
        yield
    finally:
        _CONTEXT.reset(token)


def current_log_context() -> str:
    return _CONTEXT.get()


def get_logger(name: str) -> logging.Logger:
    """Return a configured stdout logger with consistent formatting.

    - Honors LOG_LEVEL (default INFO) and LOG_FILE (optional path).
    - Handlers are attached once per logger name.
    - Lines logged inside `log_context(...)` carry the batch/image label.
    """
    logger = logging.getLogger(f"order_tracking.{name}")
    if getattr(logger, "_order_tracking_configured", False):
        return logger

    level = _coerce_level(os.environ.get("LOG_LEVEL", "INFO"))
    logger.setLevel(level)

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    context_filter = BatchContextFilter()

    sh = logging.StreamHandler()
    sh.setLevel(level)
    sh.setFormatter(formatter)
    sh.addFilter(context_filter)
    logger.addHandler(sh)

    # Optional log file (appends)
    log_file = os.environ.get("LOG_FILE")
    if log_file:
        try:
            fh = logging.FileHandler(log_file, encoding="utf-8")
            fh.setLevel(level)
            fh.setFormatter(formatter)
            fh.addFilter(context_filter)
            logger.addHandler(fh)
        except OSError:
            logger.warning("LOG_FILE could not be opened; continuing without file logging")

    logger.propagate = False
    setattr(logger, "_order_tracking_configured", True)
    return logger
