"""Logging setup for buildbench.

Everything logs under the ``buildbench`` namespace.  The console handler
follows ``-v``/``-q``; an optional log file always receives DEBUG.
Messages about a particular variant go through :class:`VariantLogger`
so the variant id is attached to every line.
"""

from __future__ import annotations

import logging
from collections.abc import MutableMapping
from pathlib import Path
from typing import Any

_LOGGER_NAME = "buildbench"
_FILE_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
_CONSOLE_FORMAT = "%(levelname)-8s %(message)s"


def setup_logging(
    *,
    verbose: bool = False,
    quiet: bool = False,
    log_file: Path | None = None,
) -> logging.Logger:
    """Configure and return the ``buildbench`` logger.

    Args:
        verbose: Console logs at DEBUG.
        quiet: Console logs at WARNING.  Ignored if *verbose* is True.
        log_file: If provided, also log everything at DEBUG to this path.
    """
    logger = logging.getLogger(_LOGGER_NAME)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console = logging.StreamHandler()
    if verbose:
        console.setLevel(logging.DEBUG)
    elif quiet:
        console.setLevel(logging.WARNING)
    else:
        console.setLevel(logging.INFO)
    console.setFormatter(logging.Formatter(_CONSOLE_FORMAT))
    logger.addHandler(console)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(log_file, encoding="utf-8")
        fh.setLevel(logging.DEBUG)
        fh.setFormatter(logging.Formatter(_FILE_FORMAT))
        logger.addHandler(fh)

    return logger


def get_logger(name: str) -> logging.Logger:
    """Return the ``buildbench.<name>`` child logger."""
    return logging.getLogger(f"{_LOGGER_NAME}.{name}")


class VariantLogger(logging.LoggerAdapter):  # type: ignore[type-arg]
    """Prefix every message with ``[variant-id]``."""

    def __init__(self, logger: logging.Logger, variant_id: str) -> None:
        super().__init__(logger, {"variant_id": variant_id})

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> tuple[Any, MutableMapping[str, Any]]:
        variant_id = self.extra["variant_id"] if self.extra else "?"
        return f"[{variant_id}] {msg}", kwargs
