from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from ..models import LogEntry

logger = logging.getLogger("backend.api.audit")


def record(session: AsyncSession, message: str, *, source: str, level: str = "info", **context: Any) -> LogEntry:
    """Stage an audit row in the caller's transaction and mirror it to the log."""
    entry = LogEntry(
        level=level,
        message=message,
        source=source,
        context={key: _plain(value) for key, value in context.items()},
    )
    session.add(entry)
    logger.log(logging.getLevelName(level.upper()), "%s %s", message, entry.context)
    return entry


def _plain(value: Any) -> Any:
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    return str(value)
