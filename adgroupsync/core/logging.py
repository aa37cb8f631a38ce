"""Logging for adgroupsync.

Usage:
    from adgroupsync.core.logging import logger

    logger.info("Starting full crawl")

    crawl_logger = logger.with_context(crawl="incremental", source="dc1")
    crawl_logger.warning("Primary group not found")
"""

import logging
import sys
from typing import Any, MutableMapping, Optional, Tuple

LOGGER_NAME = "adgroupsync"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class ContextualLogger(logging.LoggerAdapter):
    """Logger adapter that prefixes messages with contextual dimensions.

    Dimensions are key/value pairs (e.g. source host, crawl kind) that are
    attached to every record emitted through this adapter. Child loggers
    created with ``with_context`` inherit and extend the parent's dimensions.
    """

    def __init__(self, logger: logging.Logger, dimensions: Optional[dict] = None):
        """Initialize the adapter.

        Args:
            logger: Underlying stdlib logger.
            dimensions: Contextual key/value pairs for every record.
        """
        super().__init__(logger, dict(dimensions or {}))
        self.dimensions = dict(dimensions or {})

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, Any]:
        """Prefix the message with the contextual dimensions."""
        extra = kwargs.setdefault("extra", {})
        extra.update(self.dimensions)
        if not self.dimensions:
            return msg, kwargs
        prefix = " ".join(f"{key}={value}" for key, value in self.dimensions.items())
        return f"[{prefix}] {msg}", kwargs

    def with_context(self, **dimensions: Any) -> "ContextualLogger":
        """Return a child logger with additional dimensions."""
        merged = {**self.dimensions, **dimensions}
        return ContextualLogger(self.logger, merged)


def configure_logging(level: str = "INFO") -> None:
    """Attach a stream handler to the package logger and set its level.

    Safe to call more than once; an existing handler is reused.
    """
    base = logging.getLogger(LOGGER_NAME)
    base.setLevel(level.upper())
    if not base.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        base.addHandler(handler)


logger = ContextualLogger(logging.getLogger(LOGGER_NAME))
