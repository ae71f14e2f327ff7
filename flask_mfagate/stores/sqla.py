"""
SQLAlchemy persistence for MFA enrollments and audit events.

Provides the tables backing :class:`SQLASecretStore` and
:class:`SQLAAuditSink`:

- ``ab_user_mfa``: one row per user, TOTP secret (optionally Fernet
  encrypted at rest) and enabled flag
- ``ab_mfa_backup_code``: hashed backup codes; consumed codes are flagged,
  never deleted, until the user re-enrolls
- ``ab_mfa_audit_log``: MFA audit trail
"""

import hmac
import json
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Iterator, List, Optional

from cryptography.fernet import Fernet, InvalidToken
from sqlalchemy import (
    Boolean, Column, DateTime, ForeignKey, Index, Integer, String, Text, delete, select, update
)
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, relationship, sessionmaker

from ..audit import AuditSink
from ..exceptions import ConfigurationError, StorageUnavailableError
from ..models import AuditEvent, BackupCode, MFAEnrollment
from .base import SecretStore

log = logging.getLogger(__name__)

Model = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class _ConcurrentInsert(Exception):
    """First-time enrollment row was inserted by another transaction."""


class UserMFA(Model):
    """Per-user MFA configuration."""

    __tablename__ = 'ab_user_mfa'

    id = Column(Integer, primary_key=True)
    user_key = Column(String(64), nullable=False, unique=True)
    totp_secret = Column(Text, nullable=False)
    is_enabled = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime, default=_utcnow, nullable=False)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow, nullable=False)
    enabled_at = Column(DateTime)

    backup_codes = relationship(
        "MFABackupCode", back_populates="user_mfa",
        cascade="all, delete-orphan", order_by="MFABackupCode.id"
    )

    def __repr__(self):
        return f"<UserMFA {self.user_key} enabled={self.is_enabled}>"


class MFABackupCode(Model):
    """Hashed single-use recovery code."""

    __tablename__ = 'ab_mfa_backup_code'

    id = Column(Integer, primary_key=True)
    user_mfa_id = Column(Integer, ForeignKey('ab_user_mfa.id'), nullable=False)
    code_hash = Column(String(255), nullable=False)
    is_used = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=_utcnow, nullable=False)
    used_at = Column(DateTime)

    user_mfa = relationship("UserMFA", back_populates="backup_codes")

    __table_args__ = (
        Index('idx_mfa_backup_unused', 'user_mfa_id', 'is_used'),
    )

    def __repr__(self):
        return f"<MFABackupCode {self.id} used={self.is_used}>"


class MFAAuditLog(Model):
    """Audit log for MFA security events."""

    __tablename__ = 'ab_mfa_audit_log'

    id = Column(Integer, primary_key=True)
    user_key = Column(String(64))
    event_type = Column(String(100), nullable=False)
    level = Column(String(10), nullable=False)
    method_type = Column(String(50))
    ip_address = Column(String(45))  # IPv6 support
    user_agent = Column(String(500))
    request_id = Column(String(100))
    event_data = Column(Text)  # JSON details
    created_at = Column(DateTime, default=_utcnow, nullable=False)

    __table_args__ = (
        Index('idx_mfa_audit_user', 'user_key'),
        Index('idx_mfa_audit_event', 'event_type'),
        Index('idx_mfa_audit_created', 'created_at'),
    )

    @property
    def details(self) -> dict:
        return json.loads(self.event_data) if self.event_data else {}

    def __repr__(self):
        return f"<MFAAuditLog {self.event_type}:{self.user_key}>"


def create_tables(engine) -> None:
    """Create the MFA tables on ``engine`` if they do not exist."""
    Model.metadata.create_all(engine)


@contextmanager
def session_scope(session_factory: sessionmaker) -> Iterator[Session]:
    """Commit on success, roll back and translate backend errors on failure."""
    session = session_factory()
    try:
        yield session
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        log.error(f"MFA storage operation failed: {str(e)}")
        raise StorageUnavailableError(f"MFA storage unavailable: {e}") from e
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


class SQLASecretStore(SecretStore):
    """
    Secret store on a relational database.

    Args:
        session_factory: ``sessionmaker`` bound to the application engine
        encryption_key: Optional Fernet key; when set TOTP secrets are
            encrypted before they are written
    """

    def __init__(self, session_factory: sessionmaker, encryption_key: Optional[str] = None):
        self.session_factory = session_factory
        self._fernet = Fernet(encryption_key) if encryption_key else None

    def _encrypt(self, secret: str) -> str:
        if self._fernet is None:
            return secret
        return self._fernet.encrypt(secret.encode('utf-8')).decode('ascii')

    def _decrypt(self, stored: str) -> str:
        if self._fernet is None:
            return stored
        try:
            return self._fernet.decrypt(stored.encode('ascii')).decode('utf-8')
        except InvalidToken as e:
            raise ConfigurationError(
                "Stored TOTP secret cannot be decrypted with MFA_SECRET_ENCRYPTION_KEY"
            ) from e

    @staticmethod
    def _find(session: Session, user_id: Any) -> Optional[UserMFA]:
        return session.execute(
            select(UserMFA).where(UserMFA.user_key == str(user_id))
        ).scalar_one_or_none()

    def get_enrollment(self, user_id: Any) -> Optional[MFAEnrollment]:
        with session_scope(self.session_factory) as session:
            user_mfa = self._find(session, user_id)
            if user_mfa is None:
                return None
            return MFAEnrollment(
                user_id=user_id,
                secret=self._decrypt(user_mfa.totp_secret),
                enabled=user_mfa.is_enabled,
                backup_codes=[
                    BackupCode(code_hash=c.code_hash, consumed=c.is_used,
                               id=c.id, consumed_at=c.used_at)
                    for c in user_mfa.backup_codes
                ],
            )

    def save_pending_enrollment(self, user_id: Any, secret: str,
                                code_hashes: List[str]) -> bool:
        try:
            return self._save_pending(user_id, secret, code_hashes)
        except _ConcurrentInsert:
            # another request created the row first, replace it as a pending update
            log.info(f"Concurrent first-time MFA setup for user {user_id}, retrying")
        try:
            return self._save_pending(user_id, secret, code_hashes)
        except _ConcurrentInsert as e:
            raise StorageUnavailableError(
                f"MFA enrollment for user {user_id} kept conflicting"
            ) from e.__cause__

    def _save_pending(self, user_id: Any, secret: str, code_hashes: List[str]) -> bool:
        with session_scope(self.session_factory) as session:
            user_mfa = self._find(session, user_id)
            if user_mfa is None:
                session.add(UserMFA(
                    user_key=str(user_id),
                    totp_secret=self._encrypt(secret),
                    backup_codes=[MFABackupCode(code_hash=h) for h in code_hashes],
                ))
                try:
                    session.flush()
                except IntegrityError as e:
                    raise _ConcurrentInsert() from e
                return True

            # only a pending row may be overwritten
            result = session.execute(
                update(UserMFA)
                .where(UserMFA.id == user_mfa.id, UserMFA.is_enabled.is_(False))
                .values(totp_secret=self._encrypt(secret), enabled_at=None, updated_at=_utcnow())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                return False
            session.execute(
                delete(MFABackupCode)
                .where(MFABackupCode.user_mfa_id == user_mfa.id)
                .execution_options(synchronize_session=False)
            )
            session.add_all([
                MFABackupCode(user_mfa_id=user_mfa.id, code_hash=h) for h in code_hashes
            ])
            return True

    def enable(self, user_id: Any, secret: str) -> bool:
        with session_scope(self.session_factory) as session:
            user_mfa = self._find(session, user_id)
            if user_mfa is None or user_mfa.is_enabled:
                return False
            stored = user_mfa.totp_secret
            if not hmac.compare_digest(self._decrypt(stored), secret):
                return False
            # the stored value changes on every save, so an unchanged value
            # means no re-enrollment happened since the secret was read
            result = session.execute(
                update(UserMFA)
                .where(
                    UserMFA.id == user_mfa.id,
                    UserMFA.is_enabled.is_(False),
                    UserMFA.totp_secret == stored,
                )
                .values(is_enabled=True, enabled_at=_utcnow())
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    def unconsumed_backup_codes(self, user_id: Any) -> List[BackupCode]:
        with session_scope(self.session_factory) as session:
            rows = session.execute(
                select(MFABackupCode)
                .join(UserMFA)
                .where(UserMFA.user_key == str(user_id), MFABackupCode.is_used.is_(False))
                .order_by(MFABackupCode.id)
            ).scalars().all()
            return [BackupCode(code_hash=row.code_hash, consumed=False, id=row.id) for row in rows]

    def consume_backup_code(self, user_id: Any, code_id: Any) -> bool:
        with session_scope(self.session_factory) as session:
            user_mfa = self._find(session, user_id)
            if user_mfa is None:
                return False
            # conditional update, concurrent consumers see rowcount 0
            result = session.execute(
                update(MFABackupCode)
                .where(
                    MFABackupCode.id == code_id,
                    MFABackupCode.user_mfa_id == user_mfa.id,
                    MFABackupCode.is_used.is_(False),
                )
                .values(is_used=True, used_at=_utcnow())
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1


class SQLAAuditSink(AuditSink):
    """Persists audit events to ``ab_mfa_audit_log``."""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def emit(self, event: AuditEvent) -> None:
        context = event.context
        method = event.details.get('method')
        with session_scope(self.session_factory) as session:
            session.add(MFAAuditLog(
                user_key=None if event.user_id is None else str(event.user_id),
                event_type=event.action.value,
                level=event.level.value,
                method_type=method,
                ip_address=context.ip_address if context else None,
                user_agent=context.user_agent if context else None,
                request_id=context.request_id if context else None,
                event_data=json.dumps(event.details, default=str),
                created_at=event.timestamp.astimezone(timezone.utc).replace(tzinfo=None),
            ))
