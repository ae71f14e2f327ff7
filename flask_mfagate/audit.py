"""
Audit event delivery.

Audit sinks are fire-and-forget collaborators: a sink that raises must never
change the outcome of a verification, so components always go through
:func:`emit_safely`.
"""

import json
import logging
import threading
from abc import ABC, abstractmethod
from typing import List, Optional

from .models import AuditAction, AuditEvent, AuditLevel

log = logging.getLogger(__name__)

audit_log = logging.getLogger("flask_mfagate.audit.events")


class AuditSink(ABC):
    """Receives structured MFA audit events."""

    @abstractmethod
    def emit(self, event: AuditEvent) -> None:
        pass


class LoggingAuditSink(AuditSink):
    """Writes events as JSON lines to the ``flask_mfagate.audit.events`` logger."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or audit_log

    def emit(self, event: AuditEvent) -> None:
        level = logging.WARNING if event.level is AuditLevel.WARN else logging.INFO
        self.logger.log(level, json.dumps(event.to_dict(), default=str, sort_keys=True))


class MemoryAuditSink(AuditSink):
    """Keeps events in a list. Useful for tests and development servers."""

    def __init__(self):
        self.events: List[AuditEvent] = []
        self._lock = threading.Lock()

    def emit(self, event: AuditEvent) -> None:
        with self._lock:
            self.events.append(event)

    def actions(self) -> List[AuditAction]:
        with self._lock:
            return [event.action for event in self.events]

    def clear(self) -> None:
        with self._lock:
            self.events.clear()


def emit_safely(sink: Optional[AuditSink], event: AuditEvent) -> None:
    """
    Deliver ``event`` to ``sink``, logging and swallowing any sink failure.

    Args:
        sink: Target sink, ``None`` disables auditing
        event: Event to deliver
    """
    if sink is None:
        return
    try:
        sink.emit(event)
    except Exception as e:
        log.error(
            f"Audit sink {type(sink).__name__} failed for {event.action.value} "
            f"(user {event.user_id}): {str(e)}"
        )
