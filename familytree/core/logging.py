from __future__ import annotations

import logging

from familytree.core.config import get_settings


_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"
_configured = False


def configure_logging() -> None:
    # Install one root handler; repeated app factories must not duplicate output.
    global _configured
    settings = get_settings()
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    root = logging.getLogger()
    root.setLevel(level)
    if _configured:
        return
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(_LOG_FORMAT))
    root.addHandler(handler)
    # SQL echo stays off unless explicitly requested at DEBUG.
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    _configured = True
