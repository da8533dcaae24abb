from __future__ import annotations

import logging
import os
from typing import Optional


_ROOT_NAME = "cartsession"
_LOGGER: Optional[logging.Logger] = None


def _level_from_env() -> int:
    name = os.getenv("CART_LOG_LEVEL", "INFO").strip().upper()
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO


def get_logger(name: str | None = None) -> logging.Logger:
    """Return the package logger, or a child of it when ``name`` is given.

    The stream handler is attached once to the package root so child loggers
    propagate to it.
    """
    global _LOGGER
    if _LOGGER is None:
        logger = logging.getLogger(_ROOT_NAME)
        if not logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
            logger.addHandler(handler)
        logger.setLevel(_level_from_env())
        _LOGGER = logger
    if name:
        return _LOGGER.getChild(name)
    return _LOGGER
