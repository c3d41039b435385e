"""User-behaviour events written as JSON lines through a dedicated logger."""
import json
import logging
import os
from datetime import datetime, timezone
from typing import Optional

from config import settings

event_log = logging.getLogger("events")


def configure_event_log(path: Optional[str] = None) -> None:
    """Attach a JSON-lines file handler to the ``events`` logger."""
    path = path or settings.EVENTS_LOG_FILE
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setFormatter(logging.Formatter("%(message)s"))
    event_log.addHandler(handler)
    event_log.setLevel(logging.INFO)
    event_log.propagate = False


def log_event(user_id, event: str, **details) -> None:
    record = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "user_id": str(user_id),
        "event": event,
    }
    if details:
        record["details"] = details
    event_log.info(json.dumps(record, ensure_ascii=False, default=str))
