from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from cartsession.logging.logger import get_logger


def audit_event(event: str, *, level: int = logging.INFO, **fields: Any) -> dict[str, Any]:
    """Log a structured cart event and return the emitted payload.

    Fields whose value is ``None`` are dropped to keep the records compact.
    """
    logger = get_logger("audit")
    payload: dict[str, Any] = {
        "event": event,
        "timestamp": datetime.now(tz=timezone.utc).isoformat(),
    }
    payload.update({key: value for key, value in fields.items() if value is not None})
    logger.log(level, "audit %s", payload)
    return payload
