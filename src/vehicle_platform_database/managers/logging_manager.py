"""
Centralized logging for the Vehicle Platform Database core.

Every module obtains its logger through `get_logger()`, optionally with a prefix
that tags each message with the subsystem it came from:

```python
from vehicle_platform_database.managers.logging_manager import get_logger

logger = get_logger(prefix="[ConnectionManager]")
logger.info("Created tenant connection for %s", tenant_id)
# 2026-01-01 12:00:00 | INFO | Vehicle_Platform_Database | [ConnectionManager] Created tenant connection for acme
```

The root application logger is configured once (console handler, level from
`settings.LOG_LEVEL`); later calls reuse it.
"""

import logging
import sys
from typing import Any, MutableMapping, Tuple

from vehicle_platform_database.config import settings

DEFAULT_LOGGER_NAME = "Vehicle_Platform_Database"
LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

_configured_loggers = set()


class PrefixedLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that prepends a fixed prefix to every message."""

    def __init__(self, logger: logging.Logger, prefix: str = ""):
        super().__init__(logger, {"prefix": prefix})
        self.prefix = prefix

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        if self.prefix:
            return f"{self.prefix} {msg}", kwargs
        return msg, kwargs


def _configure(logger: logging.Logger) -> None:
    if logger.name in _configured_loggers:
        return
    level = getattr(logging, str(settings.LOG_LEVEL).upper(), logging.INFO)
    logger.setLevel(level)
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
    logger.propagate = True
    _configured_loggers.add(logger.name)


def get_logger(name: str = DEFAULT_LOGGER_NAME, prefix: str = "") -> PrefixedLoggerAdapter:
    """
    Get a configured application logger.

    Args:
        name: Logger name. All modules share the application logger by default.
        prefix: Text prepended to each message, e.g. `"[DATABASE]"`.

    Returns:
        PrefixedLoggerAdapter: Adapter exposing the standard logging methods.
    """
    logger = logging.getLogger(name)
    _configure(logger)
    return PrefixedLoggerAdapter(logger, prefix)
