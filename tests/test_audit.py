"""
Unit tests for audit delivery.

Test Coverage:
    - Event serialization contract
    - Logging sink levels
    - Sink failures never changing verification outcomes
"""

import json
import logging
from datetime import datetime, timezone
from unittest.mock import MagicMock

from flask_mfagate.audit import LoggingAuditSink, MemoryAuditSink, emit_safely
from flask_mfagate.backup import BackupCodeVerifier
from flask_mfagate.models import AuditAction, AuditContext, AuditEvent, AuditLevel
from flask_mfagate.totp import CodeVerifier


class TestAuditEvent:
    """Test cases for AuditEvent serialization."""

    def test_to_dict(self):
        """Test the serialized keys."""
        event = AuditEvent(
            action=AuditAction.MFA_LOCKOUT,
            user_id=42,
            level=AuditLevel.WARN,
            details={'attempts': 5},
            context=AuditContext(ip_address="10.0.0.1"),
            timestamp=datetime(2024, 1, 1, tzinfo=timezone.utc),
        )

        data = event.to_dict()

        assert data == {
            'action': 'MFA_LOCKOUT',
            'userId': 42,
            'level': 'warn',
            'details': {'attempts': 5},
            'timestamp': '2024-01-01T00:00:00+00:00',
            'context': {'ipAddress': '10.0.0.1', 'userAgent': None, 'requestId': None},
        }

    def test_to_dict_without_context(self):
        """Test context is omitted when absent."""
        data = AuditEvent(action=AuditAction.MFA_ENABLED, user_id=1).to_dict()

        assert 'context' not in data
        assert data['level'] == 'info'


class TestLoggingAuditSink:
    """Test cases for LoggingAuditSink."""

    def test_levels(self, caplog):
        """Test warn events log at WARNING and info events at INFO."""
        sink = LoggingAuditSink()

        with caplog.at_level(logging.INFO, logger="flask_mfagate.audit.events"):
            sink.emit(AuditEvent(action=AuditAction.MFA_ENABLED, user_id=1))
            sink.emit(AuditEvent(action=AuditAction.MFA_LOCKOUT, user_id=1, level=AuditLevel.WARN))

        levels = [record.levelno for record in caplog.records]
        assert levels == [logging.INFO, logging.WARNING]
        assert json.loads(caplog.records[1].getMessage())['action'] == 'MFA_LOCKOUT'


class TestEmitSafely:
    """Test cases for emit_safely."""

    def test_none_sink(self):
        """Test a missing sink is a no-op."""
        emit_safely(None, AuditEvent(action=AuditAction.MFA_ENABLED, user_id=1))

    def test_swallows_and_logs(self, caplog):
        """Test sink errors are logged, not raised."""
        sink = MagicMock()
        sink.emit.side_effect = RuntimeError("disk full")

        with caplog.at_level(logging.ERROR, logger="flask_mfagate.audit"):
            emit_safely(sink, AuditEvent(action=AuditAction.MFA_ENABLED, user_id=1))

        assert "disk full" in caplog.text

    def test_failing_sink_does_not_change_outcomes(self, store, ledger, totp_service,
                                                   backup_service, enabled_user,
                                                   make_wrong_code):
        """Test verification results are identical with a broken sink."""
        sink = MagicMock()
        sink.emit.side_effect = RuntimeError("sink down")
        ledger.audit_sink = sink
        code_verifier = CodeVerifier(store, ledger, totp_service, sink)
        backup_verifier = BackupCodeVerifier(store, ledger, backup_service, sink)

        assert code_verifier.verify(42, totp_service.current_code(enabled_user.secret)).success
        assert backup_verifier.verify(42, enabled_user.backup_codes[0]).remaining_backup_codes == 9
        bad = make_wrong_code(enabled_user.secret)
        assert [code_verifier.verify(42, bad).remaining_attempts for _ in range(5)] == [4, 3, 2, 1, 0]
        assert ledger.is_locked_out(42) is True


class TestMemoryAuditSink:
    """Test cases for MemoryAuditSink."""

    def test_collects_and_clears(self):
        """Test events are kept in order and can be cleared."""
        sink = MemoryAuditSink()
        sink.emit(AuditEvent(action=AuditAction.MFA_SETUP_INITIATED, user_id=1))
        sink.emit(AuditEvent(action=AuditAction.MFA_ENABLED, user_id=1))

        assert sink.actions() == [AuditAction.MFA_SETUP_INITIATED, AuditAction.MFA_ENABLED]
        sink.clear()
        assert sink.events == []
