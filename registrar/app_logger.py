"""Logger tree for the service: every module logs under ``registrar.<name>``."""

import logging
from typing import Optional

from registrar import config

ROOT_LOGGER = "registrar"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

# capped at WARNING whatever the service level
QUIET_LOGGERS = ("pymongo", "mongomock")


def setup_logging(level: Optional[str] = None) -> logging.Logger:
    """Attach one console handler to the registrar root; safe to call again."""
    level_name = (level or config.LOG_LEVEL).upper()
    numeric = getattr(logging, level_name, logging.INFO)

    root = logging.getLogger(ROOT_LOGGER)
    root.setLevel(numeric)
    handler = next((h for h in root.handlers if getattr(h, "registrar_console", False)), None)
    if handler is None:
        handler = logging.StreamHandler()
        handler.registrar_console = True
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)
    handler.setLevel(numeric)
    root.propagate = False

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric, logging.WARNING))
    return root


def get_logger(name: Optional[str] = None) -> logging.Logger:
    root = logging.getLogger(ROOT_LOGGER)
    return root.getChild(name) if name else root
