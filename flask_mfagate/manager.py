"""
Flask integration for the MFA login gate.

:class:`MFAGate` builds the components from configuration and exposes the
login flow used by authentication views::

    mfa = MFAGate(app, store=SQLASecretStore(Session))

    # after the password check succeeded
    credential = mfa.issue_pending_credential(user.id, user.email)

    # second request, from the client
    result = mfa.verify_totp_login(credential, code)
    if result.success:
        ...  # issue the session

The components can also be used without Flask through :meth:`MFAGate.configure`.
"""

import logging
from typing import Any, Callable, Dict, Optional

from flask import Flask, current_app, g, has_request_context, request
from sqlalchemy.orm import sessionmaker

from .audit import AuditSink, LoggingAuditSink
from .backup import BackupCodeService, BackupCodeVerifier
from .config import MFAConfig
from .enrollment import EnrollmentCoordinator
from .exceptions import InvalidCredentialError
from .ledger import AttemptLedger, AttemptStore, MemoryAttemptStore, RedisAttemptStore
from .models import AuditContext, MFAStatus, PendingIdentity, SetupInfo, VerificationResult
from .stores.base import SecretStore
from .stores.memory import MemorySecretStore
from .stores.sqla import SQLASecretStore
from .tokens import TokenCodec
from .totp import CodeVerifier, TOTPService

log = logging.getLogger(__name__)

EXTENSION_NAME = "mfagate"


def request_audit_context() -> AuditContext:
    """
    Build an audit context from the active Flask request.

    The address is ``request.remote_addr``; client supplied forwarding headers
    are not trusted. Behind a proxy, wrap the application with
    ``werkzeug.middleware.proxy_fix.ProxyFix`` so ``remote_addr`` is correct.
    """
    return AuditContext(
        ip_address=request.remote_addr,
        user_agent=request.headers.get('User-Agent'),
        request_id=request.headers.get('X-Request-ID') or g.get('request_id'),
    )


class MFAGate:
    """
    MFA login gate extension.

    Args:
        app: Flask application, may be passed later to :meth:`init_app`
        store: Secret store; defaults to a non-persistent in-memory store
        session_factory: SQLAlchemy ``sessionmaker``; when given and no store is
            passed, a :class:`SQLASecretStore` using ``MFA_SECRET_ENCRYPTION_KEY``
            is built
        attempt_store: Lockout counter backend; defaults to in-memory, or
            redis when ``MFA_REDIS_URL`` is set
        audit_sink: Defaults to :class:`LoggingAuditSink`
        clock: Epoch-time source shared by all components
    """

    def __init__(self, app: Optional[Flask] = None, store: Optional[SecretStore] = None,
                 session_factory: Optional[sessionmaker] = None,
                 attempt_store: Optional[AttemptStore] = None,
                 audit_sink: Optional[AuditSink] = None,
                 clock: Optional[Callable[[], float]] = None):
        self.store = store
        self.session_factory = session_factory
        self.attempt_store = attempt_store
        self.audit_sink = audit_sink
        self.clock = clock
        self.config: Optional[MFAConfig] = None
        if app is not None:
            self.init_app(app)

    def init_app(self, app: Flask) -> None:
        """Read ``MFA_*`` settings from ``app.config`` and register the extension."""
        self.configure(MFAConfig.from_mapping(app.config))
        app.extensions[EXTENSION_NAME] = self
        log.info("MFA gate initialized")

    def configure(self, config: MFAConfig) -> "MFAGate":
        """Build all components from ``config``."""
        self.config = config

        if self.store is None and self.session_factory is not None:
            self.store = SQLASecretStore(
                self.session_factory, encryption_key=config.secret_encryption_key
            )
        if self.store is None:
            log.warning("No MFA secret store configured, enrollments will not persist")
            self.store = MemorySecretStore()
        if self.attempt_store is None:
            self.attempt_store = self._default_attempt_store(config)
        if self.audit_sink is None:
            self.audit_sink = LoggingAuditSink()

        self.token_codec = TokenCodec(config.token_secret, ttl=config.token_ttl, clock=self.clock)
        self.ledger = AttemptLedger(
            store=self.attempt_store,
            max_attempts=config.max_attempts,
            lockout_duration=config.lockout_duration,
            audit_sink=self.audit_sink,
            clock=self.clock,
        )
        self.totp_service = TOTPService(
            issuer=config.totp_issuer, window=config.totp_window, clock=self.clock
        )
        self.backup_service = BackupCodeService(
            count=config.backup_code_count,
            length=config.backup_code_length,
            hash_method=config.backup_code_hash_method,
        )
        self.code_verifier = CodeVerifier(
            self.store, self.ledger, self.totp_service, self.audit_sink,
            reveal_lockout_expiry=config.reveal_lockout_expiry,
        )
        self.backup_verifier = BackupCodeVerifier(
            self.store, self.ledger, self.backup_service, self.audit_sink,
            reveal_lockout_expiry=config.reveal_lockout_expiry,
        )
        self.enrollment = EnrollmentCoordinator(
            self.store, self.totp_service, self.backup_service, self.audit_sink
        )
        return self

    @staticmethod
    def _default_attempt_store(config: MFAConfig) -> AttemptStore:
        if config.redis_url:
            return RedisAttemptStore.from_url(config.redis_url)
        return MemoryAttemptStore()

    @staticmethod
    def _context(context: Optional[AuditContext]) -> Optional[AuditContext]:
        if context is None and has_request_context():
            return request_audit_context()
        return context

    def issue_pending_credential(self, user_id: Any, email: str) -> str:
        """Credential handed to the client after a successful password check."""
        return self.token_codec.issue(user_id, email)

    def resolve_credential(self, credential: str) -> Optional[PendingIdentity]:
        """Validated identity, or None for any invalid or expired credential."""
        try:
            return self.token_codec.validate(credential)
        except InvalidCredentialError:
            log.warning("Rejected pending MFA credential")
            return None

    def verify_totp_login(self, credential: str, code: str,
                          context: Optional[AuditContext] = None) -> VerificationResult:
        identity = self.resolve_credential(credential)
        if identity is None:
            return VerificationResult.invalid_credential()
        return self.code_verifier.verify(
            identity.user_id, code, email=identity.email, context=self._context(context)
        )

    def verify_backup_login(self, credential: str, code: str,
                            context: Optional[AuditContext] = None) -> VerificationResult:
        identity = self.resolve_credential(credential)
        if identity is None:
            return VerificationResult.invalid_credential()
        return self.backup_verifier.verify(
            identity.user_id, code, email=identity.email, context=self._context(context)
        )

    def begin_setup(self, user_id: Any, email: str,
                    context: Optional[AuditContext] = None) -> SetupInfo:
        return self.enrollment.begin_setup(user_id, email, context=self._context(context))

    def confirm_setup(self, user_id: Any, code: str,
                      context: Optional[AuditContext] = None) -> Dict[str, Any]:
        return self.enrollment.confirm_setup(user_id, code, context=self._context(context))

    def status(self, user_id: Any) -> MFAStatus:
        return self.enrollment.status(user_id)


def get_mfa_gate() -> MFAGate:
    """The :class:`MFAGate` registered on the current application."""
    return current_app.extensions[EXTENSION_NAME]
