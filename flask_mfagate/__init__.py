"""
Flask-MFAGate - second-factor login gate for Flask applications.

Components:
    - tokens: signed pending-MFA credentials bridging password and second factor
    - ledger: per-user failed-attempt counting and lockout
    - totp: TOTP secrets, provisioning URIs and login verification
    - backup: single-use backup codes
    - enrollment: setup and confirmation state machine
    - audit: fire-and-forget audit sinks
    - stores: in-memory and SQLAlchemy secret stores
    - manager: Flask extension wiring the above together

Dependencies:
    - pyotp: TOTP generation and validation
    - PyJWT: pending credential signing
    - werkzeug: backup code hashing
    - SQLAlchemy, cryptography: persistent secret store, encryption at rest
    - redis (optional): shared lockout counters
    - qrcode (optional): QR rendering of provisioning URIs
"""

__version__ = "1.0.0"

from .audit import AuditSink, LoggingAuditSink, MemoryAuditSink  # noqa: F401
from .backup import BackupCodeService, BackupCodeVerifier  # noqa: F401
from .config import MFAConfig  # noqa: F401
from .enrollment import EnrollmentCoordinator  # noqa: F401
from .exceptions import (  # noqa: F401
    AlreadyEnabledError,
    ConfigurationError,
    ExpiredCredentialError,
    InvalidCodeError,
    InvalidCredentialError,
    LockedOutError,
    MFAError,
    NotConfiguredError,
    SetupNotInitiatedError,
    StorageUnavailableError,
)
from .ledger import AttemptLedger, AttemptStore, MemoryAttemptStore, RedisAttemptStore  # noqa: F401
from .manager import MFAGate, get_mfa_gate, request_audit_context  # noqa: F401
from .models import (  # noqa: F401
    AuditAction,
    AuditContext,
    AuditEvent,
    MFAMethod,
    VerificationOutcome,
    VerificationResult,
)
from .stores import MemorySecretStore, SecretStore, SQLAAuditSink, SQLASecretStore  # noqa: F401
from .tokens import TokenCodec  # noqa: F401
from .totp import CodeVerifier, TOTPService  # noqa: F401
