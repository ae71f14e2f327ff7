"""
Single-use backup (recovery) codes.

Codes are generated in a batch at enrollment, shown to the user once, and
persisted only as salted werkzeug password hashes. A consumed code is
flagged, never deleted.
"""

import logging
import secrets
from typing import Any, List, Optional

from werkzeug.security import check_password_hash, generate_password_hash

from .audit import AuditSink, emit_safely
from .ledger import AttemptLedger
from .models import (
    AuditAction, AuditContext, AuditEvent, AuditLevel, MFAMethod,
    VerificationOutcome, VerificationResult,
)
from .stores.base import SecretStore

log = logging.getLogger(__name__)

# Excludes confusing characters: 0, O, I, 1
BACKUP_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"


class BackupCodeService:
    """
    Generation and hashing of backup codes.

    Args:
        count: Codes per batch
        length: Characters per code
        hash_method: Any method accepted by ``werkzeug.security.generate_password_hash``
    """

    def __init__(self, count: int = 10, length: int = 8, hash_method: str = "scrypt"):
        self.count = count
        self.length = length
        self.hash_method = hash_method

    def generate_codes(self) -> List[str]:
        """
        Generate a batch of unique codes.

        Returns:
            List[str]: Plaintext codes, e.g. ``["K7WQ2MZP", ...]``
        """
        codes: List[str] = []
        while len(codes) < self.count:
            code = ''.join(secrets.choice(BACKUP_CODE_ALPHABET) for _ in range(self.length))
            if code not in codes:
                codes.append(code)
        return codes

    @staticmethod
    def normalize(code: str) -> str:
        """Upper-case and strip the separators users tend to type."""
        return code.replace('-', '').replace(' ', '').strip().upper()

    def hash_code(self, code: str) -> str:
        return generate_password_hash(self.normalize(code), method=self.hash_method)

    def hash_codes(self, codes: List[str]) -> List[str]:
        return [self.hash_code(code) for code in codes]

    def check_code(self, code_hash: str, code: str) -> bool:
        return check_password_hash(code_hash, self.normalize(code))


class BackupCodeVerifier:
    """
    Login-time backup code verification.

    Exhausted code sets are not reported differently from a wrong code.
    """

    def __init__(self, store: SecretStore, ledger: AttemptLedger,
                 backup_service: BackupCodeService, audit_sink: Optional[AuditSink] = None,
                 reveal_lockout_expiry: bool = False):
        self.store = store
        self.ledger = ledger
        self.backup_service = backup_service
        self.audit_sink = audit_sink
        self.reveal_lockout_expiry = reveal_lockout_expiry

    def verify(self, user_id: Any, code: str, email: Optional[str] = None,
               context: Optional[AuditContext] = None) -> VerificationResult:
        """
        Verify and consume a backup code.

        Args:
            user_id: User from the validated pending credential
            code: Submitted plaintext backup code
            email: Email bound to the pending credential, echoed in the result
            context: Request context forwarded to audit events

        Returns:
            VerificationResult: On ``SUCCESS`` carries ``remaining_backup_codes``;
                on ``INVALID_CODE`` carries ``remaining_attempts``

        Raises:
            StorageUnavailableError: If the secret store cannot be reached
        """
        if self.ledger.is_locked_out(user_id):
            log.warning(f"Backup code refused for locked out user {user_id}")
            return VerificationResult(
                outcome=VerificationOutcome.LOCKED_OUT,
                user_id=user_id,
                method=MFAMethod.BACKUP_CODE,
                remaining_attempts=0,
                locked_until=self.ledger.locked_until(user_id) if self.reveal_lockout_expiry else None,
            )

        enrollment = self.store.get_enrollment(user_id)
        if enrollment is None or not enrollment.enabled:
            log.warning(f"Backup code login attempted for user {user_id} without enabled MFA")
            return VerificationResult(
                outcome=VerificationOutcome.NOT_CONFIGURED,
                user_id=user_id,
                method=MFAMethod.BACKUP_CODE,
            )

        candidates = self.store.unconsumed_backup_codes(user_id)
        if not candidates:
            log.info(f"User {user_id} submitted a backup code with none remaining")

        matched = False
        for candidate in candidates:
            if self.backup_service.check_code(candidate.code_hash, code or ''):
                matched = self.store.consume_backup_code(user_id, candidate.id)
                if not matched:
                    log.warning(f"Backup code for user {user_id} was consumed concurrently")
                break

        if matched:
            self.ledger.clear(user_id)
            remaining_codes = self.store.count_unconsumed_backup_codes(user_id)
            emit_safely(self.audit_sink, AuditEvent(
                action=AuditAction.MFA_LOGIN_SUCCESS,
                user_id=user_id,
                details={
                    'method': MFAMethod.BACKUP_CODE.value,
                    'remainingBackupCodes': remaining_codes,
                },
                context=context,
            ))
            log.info(
                f"MFA login successful for user {user_id} using backup code "
                f"({remaining_codes} remaining)"
            )
            return VerificationResult(
                outcome=VerificationOutcome.SUCCESS,
                user_id=user_id,
                email=email,
                method=MFAMethod.BACKUP_CODE,
                remaining_attempts=self.ledger.max_attempts,
                remaining_backup_codes=remaining_codes,
            )

        remaining = self.ledger.record_failure(user_id, context)
        emit_safely(self.audit_sink, AuditEvent(
            action=AuditAction.MFA_LOGIN_FAILED,
            user_id=user_id,
            level=AuditLevel.WARN,
            details={
                'method': MFAMethod.BACKUP_CODE.value,
                'reason': 'Invalid backup code',
                'remainingAttempts': remaining,
            },
            context=context,
        ))
        log.warning(f"Invalid backup code for user {user_id}, {remaining} attempts remaining")
        return VerificationResult(
            outcome=VerificationOutcome.INVALID_CODE,
            user_id=user_id,
            method=MFAMethod.BACKUP_CODE,
            remaining_attempts=remaining,
        )
