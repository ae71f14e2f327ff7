"""
First-time MFA enrollment.

State machine::

    NotEnrolled --begin_setup--> PendingConfirmation --confirm_setup--> Enabled

``begin_setup`` may be repeated while pending and replaces the pending
secret and codes. Leaving ``Enabled`` is handled by account administration,
not here. Setup-time failures never touch the login attempt ledger.
"""

import logging
from typing import Any, Dict, Optional

from .audit import AuditSink, emit_safely
from .backup import BackupCodeService
from .exceptions import AlreadyEnabledError, InvalidCodeError, SetupNotInitiatedError
from .models import (
    AuditAction, AuditContext, AuditEvent, AuditLevel, MFAMethod, MFAStatus, SetupInfo
)
from .stores.base import SecretStore
from .totp import TOTPService

log = logging.getLogger(__name__)


class EnrollmentCoordinator:

    def __init__(self, store: SecretStore, totp_service: TOTPService,
                 backup_service: BackupCodeService, audit_sink: Optional[AuditSink] = None):
        self.store = store
        self.totp_service = totp_service
        self.backup_service = backup_service
        self.audit_sink = audit_sink

    def begin_setup(self, user_id: Any, email: str,
                    context: Optional[AuditContext] = None) -> SetupInfo:
        """
        Start (or restart) enrollment for a user.

        Args:
            user_id: User enrolling
            email: Account label shown in the authenticator app
            context: Request context forwarded to audit events

        Returns:
            SetupInfo: Secret, provisioning URI and the plaintext backup codes.
                The codes are not retrievable again.

        Raises:
            AlreadyEnabledError: If MFA is already enabled for the user
            StorageUnavailableError: If the secret store cannot be reached
        """
        enrollment = self.store.get_enrollment(user_id)
        if enrollment is not None and enrollment.enabled:
            raise AlreadyEnabledError()

        secret = self.totp_service.generate_secret()
        provisioning_uri = self.totp_service.provisioning_uri(secret, email)
        backup_codes = self.backup_service.generate_codes()

        saved = self.store.save_pending_enrollment(
            user_id, secret, self.backup_service.hash_codes(backup_codes)
        )
        if not saved:
            # enabled by a concurrent confirmation after the check above
            raise AlreadyEnabledError()

        emit_safely(self.audit_sink, AuditEvent(
            action=AuditAction.MFA_SETUP_INITIATED,
            user_id=user_id,
            details={'backupCodesGenerated': len(backup_codes)},
            context=context,
        ))
        log.info(f"MFA setup initiated for user {user_id}")

        return SetupInfo(
            secret=secret,
            provisioning_uri=provisioning_uri,
            backup_codes=backup_codes,
        )

    def confirm_setup(self, user_id: Any, code: str,
                      context: Optional[AuditContext] = None) -> Dict[str, Any]:
        """
        Enable a pending enrollment after one valid TOTP code.

        Returns:
            Dict[str, Any]: ``{"enabled": True, "message": ...}``

        Raises:
            AlreadyEnabledError: If MFA is already enabled
            SetupNotInitiatedError: If there is no pending enrollment
            InvalidCodeError: If the code does not match the pending secret, or
                the pending secret was replaced by a new setup meanwhile
        """
        enrollment = self.store.get_enrollment(user_id)
        if enrollment is None or not enrollment.secret:
            raise SetupNotInitiatedError()
        if enrollment.enabled:
            raise AlreadyEnabledError()

        if not self.totp_service.verify(enrollment.secret, code):
            emit_safely(self.audit_sink, AuditEvent(
                action=AuditAction.MFA_VERIFY_FAILED,
                user_id=user_id,
                level=AuditLevel.WARN,
                details={'reason': 'Invalid code'},
                context=context,
            ))
            log.warning(f"MFA setup verification failed for user {user_id}")
            raise InvalidCodeError()

        if not self.store.enable(user_id, enrollment.secret):
            current = self.store.get_enrollment(user_id)
            if current is None or not current.secret:
                raise SetupNotInitiatedError()
            if current.enabled:
                raise AlreadyEnabledError()
            # setup was restarted after the code was checked
            log.warning(f"Pending MFA secret for user {user_id} was replaced during confirmation")
            raise InvalidCodeError()

        emit_safely(self.audit_sink, AuditEvent(
            action=AuditAction.MFA_ENABLED,
            user_id=user_id,
            details={'method': MFAMethod.TOTP.value},
            context=context,
        ))
        log.info(f"MFA enabled for user {user_id}")
        return {'enabled': True, 'message': 'MFA enabled successfully'}

    def status(self, user_id: Any) -> MFAStatus:
        """Enabled/pending flags and the count of unused backup codes."""
        enrollment = self.store.get_enrollment(user_id)
        if enrollment is None:
            return MFAStatus(enabled=False, pending=False, remaining_backup_codes=0)
        return MFAStatus(
            enabled=enrollment.enabled,
            pending=not enrollment.enabled,
            remaining_backup_codes=enrollment.remaining_backup_codes if enrollment.enabled else 0,
        )
