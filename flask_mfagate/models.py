"""
Data structures shared by the MFA components.

These are plain dataclasses; persistence mappings live in
:mod:`flask_mfagate.stores.sqla`.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from .exceptions import (
    InvalidCodeError,
    InvalidCredentialError,
    LockedOutError,
    NotConfiguredError,
)


class MFAMethod(Enum):
    """Second factors supported at login."""
    TOTP = "TOTP"
    BACKUP_CODE = "BACKUP_CODE"


class AuditAction(Enum):
    MFA_LOGIN_SUCCESS = "MFA_LOGIN_SUCCESS"
    MFA_LOGIN_FAILED = "MFA_LOGIN_FAILED"
    MFA_LOCKOUT = "MFA_LOCKOUT"
    MFA_SETUP_INITIATED = "MFA_SETUP_INITIATED"
    MFA_ENABLED = "MFA_ENABLED"
    MFA_VERIFY_FAILED = "MFA_VERIFY_FAILED"


class AuditLevel(Enum):
    INFO = "info"
    WARN = "warn"


class VerificationOutcome(Enum):
    """Tagged outcome of a login-time verification."""
    SUCCESS = "success"
    INVALID_CREDENTIAL = "invalid_credential"
    LOCKED_OUT = "locked_out"
    NOT_CONFIGURED = "not_configured"
    INVALID_CODE = "invalid_code"


@dataclass
class BackupCode:
    """A single stored backup code. ``code_hash`` is never the plaintext."""
    code_hash: str
    consumed: bool = False
    id: Optional[int] = None
    consumed_at: Optional[datetime] = None


@dataclass
class MFAEnrollment:
    """
    Per-user MFA record as held by a :class:`~flask_mfagate.stores.SecretStore`.

    ``enabled`` stays False until the user confirms setup with a valid code;
    a disabled enrollment is never usable for login.
    """
    user_id: Any
    secret: str
    enabled: bool = False
    backup_codes: List[BackupCode] = field(default_factory=list)

    @property
    def remaining_backup_codes(self) -> int:
        return sum(1 for code in self.backup_codes if not code.consumed)


@dataclass
class AttemptRecord:
    """Failed-attempt counter for one user. Timestamps are epoch seconds."""
    failure_count: int = 0
    locked_until: Optional[float] = None

    def is_locked(self, now: float) -> bool:
        return self.locked_until is not None and self.locked_until > now


@dataclass(frozen=True)
class PendingIdentity:
    """Identity bound to a validated pending credential."""
    user_id: Any
    email: str
    issued_at: int
    expires_at: int


@dataclass(frozen=True)
class AuditContext:
    """Opaque request context forwarded to audit events."""
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    request_id: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            'ipAddress': self.ip_address,
            'userAgent': self.user_agent,
            'requestId': self.request_id,
        }


@dataclass
class AuditEvent:
    action: AuditAction
    user_id: Any
    level: AuditLevel = AuditLevel.INFO
    details: Dict[str, Any] = field(default_factory=dict)
    context: Optional[AuditContext] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the audit event contract."""
        data = {
            'action': self.action.value,
            'userId': self.user_id,
            'level': self.level.value,
            'details': dict(self.details),
            'timestamp': self.timestamp.isoformat(),
        }
        if self.context is not None:
            data['context'] = self.context.as_dict()
        return data


@dataclass
class VerificationResult:
    """
    Result of a second-factor verification.

    Callers are expected to branch on ``outcome``; :meth:`raise_for_outcome`
    is provided for code paths that prefer exceptions.
    """
    outcome: VerificationOutcome
    user_id: Any = None
    email: Optional[str] = None
    method: Optional[MFAMethod] = None
    remaining_attempts: Optional[int] = None
    remaining_backup_codes: Optional[int] = None
    locked_until: Optional[float] = None

    @property
    def success(self) -> bool:
        return self.outcome is VerificationOutcome.SUCCESS

    def raise_for_outcome(self) -> "VerificationResult":
        if self.outcome is VerificationOutcome.SUCCESS:
            return self
        if self.outcome is VerificationOutcome.INVALID_CODE:
            raise InvalidCodeError(self.remaining_attempts)
        if self.outcome is VerificationOutcome.LOCKED_OUT:
            raise LockedOutError(self.locked_until)
        if self.outcome is VerificationOutcome.NOT_CONFIGURED:
            raise NotConfiguredError()
        raise InvalidCredentialError()

    @classmethod
    def invalid_credential(cls) -> "VerificationResult":
        return cls(outcome=VerificationOutcome.INVALID_CREDENTIAL)


@dataclass(frozen=True)
class SetupInfo:
    """Returned once by ``begin_setup``; backup codes are plaintext here only."""
    secret: str
    provisioning_uri: str
    backup_codes: List[str]


@dataclass(frozen=True)
class MFAStatus:
    enabled: bool
    pending: bool
    remaining_backup_codes: int
