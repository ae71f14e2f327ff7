"""
Unit tests for backup code generation and login verification.

Test Coverage:
    - Code format, uniqueness and hashing
    - Single use and remaining count reporting
    - Failure accounting shared with TOTP
    - Store outages propagating unchanged
"""

from unittest.mock import MagicMock, patch

import pytest

from flask_mfagate.backup import BACKUP_CODE_ALPHABET, BackupCodeService, BackupCodeVerifier
from flask_mfagate.exceptions import StorageUnavailableError
from flask_mfagate.models import (
    AuditAction, BackupCode, MFAEnrollment, MFAMethod, VerificationOutcome
)


class TestBackupCodeService:
    """Test cases for BackupCodeService."""

    def test_generate_codes(self, backup_service):
        """Test ten unique eight character codes from the unambiguous alphabet."""
        codes = backup_service.generate_codes()

        assert len(codes) == 10
        assert len(set(codes)) == 10
        for code in codes:
            assert len(code) == 8
            assert set(code) <= set(BACKUP_CODE_ALPHABET)

    def test_alphabet_excludes_confusable_characters(self):
        """Test 0, O, I and 1 are never generated."""
        assert not set("0OI1") & set(BACKUP_CODE_ALPHABET)

    def test_custom_count_and_length(self):
        """Test batch size and code length are configurable."""
        service = BackupCodeService(count=3, length=12, hash_method="pbkdf2:sha256:1000")

        codes = service.generate_codes()

        assert len(codes) == 3
        assert all(len(code) == 12 for code in codes)

    def test_hash_is_not_plaintext(self, backup_service):
        """Test stored hashes never contain the code."""
        code_hash = backup_service.hash_code("ABCD2345")

        assert "ABCD2345" not in code_hash
        assert backup_service.check_code(code_hash, "ABCD2345") is True
        assert backup_service.check_code(code_hash, "ABCD2346") is False

    def test_hashes_are_salted(self, backup_service):
        """Test the same code hashes differently each time."""
        assert backup_service.hash_code("ABCD2345") != backup_service.hash_code("ABCD2345")

    def test_normalization(self, backup_service):
        """Test lower case and separators are accepted."""
        code_hash = backup_service.hash_code("ABCD2345")

        assert backup_service.check_code(code_hash, "abcd2345") is True
        assert backup_service.check_code(code_hash, " abcd-2345 ") is True


class TestBackupCodeVerifier:
    """Test cases for login-time backup code verification."""

    def test_success_consumes_code(self, backup_verifier, enabled_user, audit_sink):
        """Test a valid code succeeds once and nine remain."""
        result = backup_verifier.verify(42, enabled_user.backup_codes[0], email="user@example.com")

        assert result.success is True
        assert result.method is MFAMethod.BACKUP_CODE
        assert result.remaining_backup_codes == 9
        assert result.email == "user@example.com"
        event = audit_sink.events[-1]
        assert event.action is AuditAction.MFA_LOGIN_SUCCESS
        assert event.details == {'method': 'BACKUP_CODE', 'remainingBackupCodes': 9}

    def test_code_is_single_use(self, backup_verifier, enabled_user):
        """Test reusing a consumed code fails."""
        code = enabled_user.backup_codes[0]
        backup_verifier.verify(42, code)

        result = backup_verifier.verify(42, code)

        assert result.outcome is VerificationOutcome.INVALID_CODE
        assert result.remaining_attempts == 4

    def test_lowercase_code_accepted(self, backup_verifier, enabled_user):
        """Test codes are matched case-insensitively."""
        result = backup_verifier.verify(42, enabled_user.backup_codes[3].lower())
        assert result.success is True

    def test_each_code_usable_once(self, backup_verifier, enabled_user):
        """Test all ten codes work and the count reaches zero."""
        counts = [backup_verifier.verify(42, code).remaining_backup_codes
                  for code in enabled_user.backup_codes]

        assert counts == list(range(9, -1, -1))

    def test_exhausted_codes_report_invalid(self, backup_verifier, enabled_user):
        """Test an exhausted set looks like a wrong code."""
        for code in enabled_user.backup_codes:
            backup_verifier.verify(42, code)

        result = backup_verifier.verify(42, enabled_user.backup_codes[0])

        assert result.outcome is VerificationOutcome.INVALID_CODE

    def test_wrong_code_counts_failure(self, backup_verifier, enabled_user, audit_sink):
        """Test a wrong backup code is recorded against the user."""
        result = backup_verifier.verify(42, "ZZZZZZZZ")

        assert result.outcome is VerificationOutcome.INVALID_CODE
        assert result.remaining_attempts == 4
        event = audit_sink.events[-1]
        assert event.action is AuditAction.MFA_LOGIN_FAILED
        assert event.details['method'] == 'BACKUP_CODE'

    def test_failures_shared_with_totp(self, backup_verifier, code_verifier, enabled_user,
                                       make_wrong_code):
        """Test TOTP and backup failures count toward one lockout."""
        bad_totp = make_wrong_code(enabled_user.secret)
        for _ in range(3):
            code_verifier.verify(42, bad_totp)
        backup_verifier.verify(42, "ZZZZZZZZ")
        backup_verifier.verify(42, "ZZZZZZZZ")

        result = backup_verifier.verify(42, enabled_user.backup_codes[0])

        assert result.outcome is VerificationOutcome.LOCKED_OUT

    def test_success_resets_failures(self, backup_verifier, ledger, enabled_user):
        """Test a valid backup code clears earlier failures."""
        backup_verifier.verify(42, "ZZZZZZZZ")

        backup_verifier.verify(42, enabled_user.backup_codes[1])

        assert ledger.remaining_attempts(42) == 5

    def test_not_enrolled(self, backup_verifier, ledger):
        """Test users without MFA are not charged a failure."""
        result = backup_verifier.verify(99, "ABCD2345")

        assert result.outcome is VerificationOutcome.NOT_CONFIGURED
        assert ledger.remaining_attempts(99) == 5

    def test_pending_enrollment_cannot_use_codes(self, backup_verifier, enrollment):
        """Test codes from an unconfirmed setup are not accepted."""
        setup = enrollment.begin_setup(7, "p@example.com")

        result = backup_verifier.verify(7, setup.backup_codes[0])

        assert result.outcome is VerificationOutcome.NOT_CONFIGURED

    def test_lost_consume_race_is_a_failure(self, backup_verifier, store, enabled_user):
        """Test a code consumed concurrently is treated as not matching."""
        with patch.object(store, 'consume_backup_code', return_value=False):
            result = backup_verifier.verify(42, enabled_user.backup_codes[0])

        assert result.outcome is VerificationOutcome.INVALID_CODE


class TestBackupCodeStorageFailures:
    """Store outages propagate instead of becoming NOT_CONFIGURED or INVALID_CODE."""

    @pytest.fixture
    def failing_store(self, backup_service):
        store = MagicMock()
        code_hash = backup_service.hash_code("ABCD2345")
        store.get_enrollment.return_value = MFAEnrollment(
            user_id=42, secret="JBSWY3DPEHPK3PXP", enabled=True,
            backup_codes=[BackupCode(code_hash=code_hash, id=0)],
        )
        store.unconsumed_backup_codes.return_value = [BackupCode(code_hash=code_hash, id=0)]
        return store

    @pytest.mark.parametrize("method", [
        'get_enrollment', 'unconsumed_backup_codes', 'consume_backup_code',
    ])
    def test_store_failure_propagates(self, failing_store, ledger, backup_service,
                                      audit_sink, method):
        """Test each store call failing escapes verify with the ledger untouched."""
        getattr(failing_store, method).side_effect = StorageUnavailableError("down")
        verifier = BackupCodeVerifier(failing_store, ledger, backup_service, audit_sink)

        with pytest.raises(StorageUnavailableError):
            verifier.verify(42, "ABCD2345")

        assert ledger.remaining_attempts(42) == 5
        assert audit_sink.events == []
