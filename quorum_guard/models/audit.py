"""Audit Record — one operator-facing event emitted during a pass."""

import logging
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field


class AuditSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"

    @property
    def log_level(self) -> int:
        return _LOG_LEVELS[self]


_LOG_LEVELS = {
    AuditSeverity.INFO: logging.INFO,
    AuditSeverity.WARNING: logging.WARNING,
    AuditSeverity.ERROR: logging.ERROR,
}


class AuditRecord(BaseModel):
    message: str
    severity: AuditSeverity
    recorded_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
