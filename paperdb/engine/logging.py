"""
PaperDB Logging — Structured JSON-lines logging on top of stdlib logging.

Implements:
- JsonLogFormatter: one compact JSON object per record
- configure_logging: install handlers for the "paperdb" logger tree
- Log entry builders for access-gate decisions and collection lifecycle
  events (attached to records via ``extra={"entry": ...}``)
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from paperdb.engine.config import LoggingConfig

logger = logging.getLogger("paperdb.engine.logging")

ROOT_LOGGER_NAME = "paperdb"


class JsonLogFormatter(logging.Formatter):
    """
    Formats a LogRecord as a single JSON line.

    Structured data built by the entry builders below is merged into the
    top-level object when passed as ``extra={"entry": {...}}``.
    """

    def format(self, record: logging.LogRecord) -> str:
        data: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry = getattr(record, "entry", None)
        if isinstance(entry, dict):
            data.update(entry)
        if record.exc_info:
            data["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(data, default=str, separators=(",", ":"))


def configure_logging(config: Optional[LoggingConfig] = None) -> logging.Logger:
    """
    Configure the "paperdb" logger tree from a LoggingConfig.

    Safe to call multiple times: handlers installed by a previous call
    are replaced.
    """
    config = config or LoggingConfig()
    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.setLevel(config.level.upper())

    for handler in list(root.handlers):
        if getattr(handler, "_paperdb_handler", False):
            root.removeHandler(handler)
            handler.close()

    if config.file:
        Path(config.file).parent.mkdir(parents=True, exist_ok=True)
        handler: logging.Handler = logging.FileHandler(config.file, encoding="utf-8")
    else:
        handler = logging.StreamHandler()

    if config.format == "json":
        handler.setFormatter(JsonLogFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )
    handler._paperdb_handler = True  # type: ignore[attr-defined]
    root.addHandler(handler)

    logger.debug(f"Logging configured: level={config.level} format={config.format}")
    return root


# ---------------------------------------------------------------------------
# Log Entry Builders
# ---------------------------------------------------------------------------

def _base_entry(event: str, collection_id: Optional[str] = None, **extra: Any) -> Dict[str, Any]:
    """Build a base log entry with common fields."""
    entry: Dict[str, Any] = {"event": event}
    if collection_id:
        entry["collection_id"] = collection_id
    entry.update({k: v for k, v in extra.items() if v is not None})
    return entry


def access_decision_entry(
    collection_id: Optional[str],
    entry_hash: Optional[str],
    controller: str,
    allowed: bool,
    user_id: Optional[str] = None,
) -> Dict[str, Any]:
    """Build an access-gate decision log entry."""
    return _base_entry(
        "access_allowed" if allowed else "access_denied",
        collection_id=collection_id,
        entry_hash=entry_hash,
        controller=controller,
        allowed=allowed,
        user_id=user_id,
    )


def collection_event_entry(
    event: str,
    collection_id: str,
    doctype: Optional[str] = None,
    state: Optional[str] = None,
    document_id: Optional[str] = None,
    error: Optional[str] = None,
) -> Dict[str, Any]:
    """Build a collection lifecycle log entry (instant_load/ready/add/close)."""
    return _base_entry(
        event,
        collection_id=collection_id,
        doctype=doctype,
        state=state,
        document_id=document_id,
        error=error,
    )
