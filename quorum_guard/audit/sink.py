"""
Audit Sink — the operator-facing trail of every reconciliation pass.

Behavioral Contract:
- Records structured events with a severity (info, warning, error)
- Never raises; a failing channel falls back to standard output
- Backed by a named, process-wide logging channel created once per process
"""

import logging
import logging.handlers
import sys
from typing import List, Protocol

from quorum_guard.models.audit import AuditRecord, AuditSeverity
from quorum_guard.models.config import GuardConfig

_EVENT_FORMAT = "%(message)s"


class AuditSink(Protocol):
    """Protocol for audit sinks — pluggable backend."""

    def record(
        self, message: str, severity: AuditSeverity = AuditSeverity.INFO
    ) -> None: ...


class LoggingAuditSink:
    """Audit sink writing to a ``logging`` channel and keeping the pass's records."""

    def __init__(self, channel: logging.Logger):
        self.channel = channel
        self.records: List[AuditRecord] = []

    def record(
        self, message: str, severity: AuditSeverity = AuditSeverity.INFO
    ) -> None:
        self.records.append(AuditRecord(message=message, severity=severity))
        try:
            self.channel.log(severity.log_level, message)
        except Exception as e:
            _print_fallback(e, severity.value, message)

    def records_at(self, severity: AuditSeverity) -> List[AuditRecord]:
        """All records of a given severity, in emission order."""
        return [r for r in self.records if r.severity == severity]


def _print_fallback(error: BaseException, severity: str, message: str) -> None:
    print(f"Error writing to event log: {error}")
    print(f"[{severity}] {message}")


class AuditFallbackMixin:
    """
    Handler mixin sending records it failed to emit to standard output.

    Stock handlers swallow their own emit failures and print a traceback to
    stderr through ``handleError``; audit handlers print the record instead.
    """

    def handleError(self, record: logging.LogRecord) -> None:
        _print_fallback(sys.exc_info()[1], record.levelname.lower(), record.getMessage())


class EventLogHandler(AuditFallbackMixin, logging.handlers.NTEventLogHandler):
    """Windows event log handler with the stdout fallback."""


def open_audit_channel(config: GuardConfig) -> logging.Logger:
    """
    Get the named audit channel, creating its handlers on first use.

    On Windows the channel writes to the event log under ``config.event_source``,
    registering the source in ``config.event_log_name`` if it is absent.
    Records always propagate to the root logger as well.
    """
    channel = logging.getLogger(config.audit_channel)
    if channel.handlers:
        return channel

    channel.setLevel(logging.INFO)
    if sys.platform == "win32":
        try:
            handler = EventLogHandler(
                appname=config.event_source,
                logtype=config.event_log_name,
            )
        except Exception as e:
            print(f"Error initializing event log: {e}")
        else:
            handler.setFormatter(logging.Formatter(_EVENT_FORMAT))
            channel.addHandler(handler)
    return channel
