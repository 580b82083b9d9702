from __future__ import annotations

import logging

from quotacore.core.config import get_settings


_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"

_handler: logging.Handler | None = None


def configure_logging() -> None:
    # Install one stream handler on the root logger; repeat calls only adjust the level.
    global _handler
    settings = get_settings()
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    root = logging.getLogger()
    if _handler is None or _handler not in root.handlers:
        _handler = logging.StreamHandler()
        _handler.setFormatter(logging.Formatter(_LOG_FORMAT))
        root.addHandler(_handler)
    root.setLevel(level)
