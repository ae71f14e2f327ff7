"""
Time-based One-Time Password (TOTP) support.

:class:`TOTPService` wraps pyotp (RFC 6238) for secret generation,
provisioning URIs and drift-tolerant verification. :class:`CodeVerifier`
runs the login-time verification flow against an enabled enrollment.
"""

import base64
import binascii
import io
import logging
import time
from typing import Any, Callable, Optional

import pyotp

# Conditional import for optional QR rendering
try:
    import qrcode
    HAS_QRCODE = True
except ImportError:
    HAS_QRCODE = False

from .audit import AuditSink, emit_safely
from .ledger import AttemptLedger
from .models import (
    AuditAction, AuditContext, AuditEvent, AuditLevel, MFAMethod,
    VerificationOutcome, VerificationResult,
)
from .stores.base import SecretStore

log = logging.getLogger(__name__)

TOTP_DIGITS = 6
SECRET_LENGTH = 32


class TOTPService:
    """
    TOTP generation and validation.

    Args:
        issuer: Name shown in authenticator apps
        window: Adjacent time steps accepted on each side of the current one
        clock: Returns the current epoch time; defaults to ``time.time``
    """

    def __init__(self, issuer: str = "CoreApp", window: int = 1,
                 clock: Optional[Callable[[], float]] = None):
        self.issuer = issuer
        self.window = window
        self._clock = clock or time.time

    def generate_secret(self) -> str:
        """
        Generate a secure TOTP secret key.

        Returns:
            str: 32-character base32 secret
        """
        return pyotp.random_base32(length=SECRET_LENGTH)

    def provisioning_uri(self, secret: str, account_name: str) -> str:
        """
        Build the ``otpauth://totp/<issuer>:<account>?secret=...&issuer=...``
        URI consumed by authenticator apps.
        """
        return pyotp.TOTP(secret).provisioning_uri(name=account_name, issuer_name=self.issuer)

    def generate_qr_code(self, provisioning_uri: str) -> str:
        """
        Render a provisioning URI as a QR code.

        Args:
            provisioning_uri: URI from :meth:`provisioning_uri`

        Returns:
            str: ``data:image/png;base64,...`` image
        """
        if not HAS_QRCODE:
            raise RuntimeError(
                "QR code generation requires qrcode library. "
                "Install with: pip install 'Flask-MFAGate[qr]'"
            )

        qr = qrcode.QRCode(
            version=1,
            error_correction=qrcode.constants.ERROR_CORRECT_L,
            box_size=10,
            border=4,
        )
        qr.add_data(provisioning_uri)
        qr.make(fit=True)
        img = qr.make_image(fill_color="black", back_color="white")

        img_buffer = io.BytesIO()
        img.save(img_buffer, format='PNG')
        img_str = base64.b64encode(img_buffer.getvalue()).decode()
        return f"data:image/png;base64,{img_str}"

    def verify(self, secret: str, code: str) -> bool:
        """
        Check ``code`` against ``secret`` within the drift window.

        Codes that are not exactly six digits (after removing spaces) never
        match. A corrupted secret is logged and treated as a mismatch.
        """
        if not secret or not code:
            return False
        code = code.replace(' ', '')
        if len(code) != TOTP_DIGITS or not code.isdigit():
            return False
        try:
            return pyotp.TOTP(secret).verify(
                code, for_time=self._clock(), valid_window=self.window
            )
        except (binascii.Error, ValueError, TypeError) as e:
            log.error(f"TOTP verification failed on a malformed secret: {str(e)}")
            return False

    def current_code(self, secret: str) -> str:
        """Code for the current time step. Intended for tests and tooling."""
        return pyotp.TOTP(secret).at(self._clock())


class CodeVerifier:
    """
    Login-time TOTP verification.

    Read-only against the secret store; only enabled enrollments can
    authenticate.
    """

    def __init__(self, store: SecretStore, ledger: AttemptLedger, totp_service: TOTPService,
                 audit_sink: Optional[AuditSink] = None, reveal_lockout_expiry: bool = False):
        self.store = store
        self.ledger = ledger
        self.totp_service = totp_service
        self.audit_sink = audit_sink
        self.reveal_lockout_expiry = reveal_lockout_expiry

    def verify(self, user_id: Any, code: str, email: Optional[str] = None,
               context: Optional[AuditContext] = None) -> VerificationResult:
        """
        Verify a submitted TOTP code for ``user_id``.

        Args:
            user_id: User from the validated pending credential
            code: Submitted 6-digit code
            email: Email bound to the pending credential, echoed in the result
            context: Request context forwarded to audit events

        Returns:
            VerificationResult: ``SUCCESS``, ``LOCKED_OUT``, ``NOT_CONFIGURED``
                or ``INVALID_CODE`` (with ``remaining_attempts``)

        Raises:
            StorageUnavailableError: If the secret store cannot be reached
        """
        if self.ledger.is_locked_out(user_id):
            log.warning(f"MFA verification refused for locked out user {user_id}")
            return VerificationResult(
                outcome=VerificationOutcome.LOCKED_OUT,
                user_id=user_id,
                method=MFAMethod.TOTP,
                remaining_attempts=0,
                locked_until=self.ledger.locked_until(user_id) if self.reveal_lockout_expiry else None,
            )

        enrollment = self.store.get_enrollment(user_id)
        if enrollment is None or not enrollment.enabled or not enrollment.secret:
            log.warning(f"TOTP login attempted for user {user_id} without enabled MFA")
            return VerificationResult(
                outcome=VerificationOutcome.NOT_CONFIGURED,
                user_id=user_id,
                method=MFAMethod.TOTP,
            )

        if self.totp_service.verify(enrollment.secret, code):
            self.ledger.clear(user_id)
            emit_safely(self.audit_sink, AuditEvent(
                action=AuditAction.MFA_LOGIN_SUCCESS,
                user_id=user_id,
                details={'method': MFAMethod.TOTP.value},
                context=context,
            ))
            log.info(f"MFA login successful for user {user_id}")
            return VerificationResult(
                outcome=VerificationOutcome.SUCCESS,
                user_id=user_id,
                email=email,
                method=MFAMethod.TOTP,
                remaining_attempts=self.ledger.max_attempts,
            )

        remaining = self.ledger.record_failure(user_id, context)
        emit_safely(self.audit_sink, AuditEvent(
            action=AuditAction.MFA_LOGIN_FAILED,
            user_id=user_id,
            level=AuditLevel.WARN,
            details={
                'method': MFAMethod.TOTP.value,
                'reason': 'Invalid TOTP code',
                'remainingAttempts': remaining,
            },
            context=context,
        ))
        log.warning(f"Invalid TOTP code for user {user_id}, {remaining} attempts remaining")
        return VerificationResult(
            outcome=VerificationOutcome.INVALID_CODE,
            user_id=user_id,
            method=MFAMethod.TOTP,
            remaining_attempts=remaining,
        )
