"""Shared fixtures for the Flask-MFAGate test suite."""

import pyotp
import pytest

from flask_mfagate.audit import MemoryAuditSink
from flask_mfagate.backup import BackupCodeService, BackupCodeVerifier
from flask_mfagate.enrollment import EnrollmentCoordinator
from flask_mfagate.ledger import AttemptLedger
from flask_mfagate.stores.memory import MemorySecretStore
from flask_mfagate.tokens import TokenCodec
from flask_mfagate.totp import CodeVerifier, TOTPService

# Start on a 30 second TOTP step boundary
START_TIME = 1_699_999_980.0

TOKEN_SECRET = "pending-credential-signing-key-for-tests-0123456789"
OTHER_SECRET = "some-other-signing-key-that-must-not-validate-0123"

# Cheap hash for tests; production default is scrypt
FAST_HASH_METHOD = "pbkdf2:sha256:1000"


class FakeClock:
    """Manually advanced epoch clock."""

    def __init__(self, now: float = START_TIME):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def audit_sink():
    return MemoryAuditSink()


@pytest.fixture
def store():
    return MemorySecretStore()


@pytest.fixture
def codec(clock):
    return TokenCodec(TOKEN_SECRET, ttl=300, clock=clock)


@pytest.fixture
def ledger(clock, audit_sink):
    return AttemptLedger(max_attempts=5, lockout_duration=900,
                         audit_sink=audit_sink, clock=clock)


@pytest.fixture
def totp_service(clock):
    return TOTPService(issuer="CoreApp", window=1, clock=clock)


@pytest.fixture
def backup_service():
    return BackupCodeService(count=10, length=8, hash_method=FAST_HASH_METHOD)


@pytest.fixture
def code_verifier(store, ledger, totp_service, audit_sink):
    return CodeVerifier(store, ledger, totp_service, audit_sink)


@pytest.fixture
def backup_verifier(store, ledger, backup_service, audit_sink):
    return BackupCodeVerifier(store, ledger, backup_service, audit_sink)


@pytest.fixture
def enrollment(store, totp_service, backup_service, audit_sink):
    return EnrollmentCoordinator(store, totp_service, backup_service, audit_sink)


@pytest.fixture
def enabled_user(enrollment, totp_service, audit_sink):
    """
    User 42 with confirmed MFA.

    Returns the :class:`SetupInfo` so tests can use the secret and the
    plaintext backup codes. Setup audit events are cleared.
    """
    setup = enrollment.begin_setup(42, "user@example.com")
    enrollment.confirm_setup(42, totp_service.current_code(setup.secret))
    audit_sink.clear()
    return setup


def wrong_code(secret: str, now: float) -> str:
    """A six digit code that is not valid within one step of ``now``."""
    totp = pyotp.TOTP(secret)
    valid = {totp.at(now + offset) for offset in (-30, 0, 30)}
    for candidate in ("000000", "111111", "222222", "333333"):
        if candidate not in valid:
            return candidate
    raise AssertionError("unreachable")


@pytest.fixture
def make_wrong_code(clock):
    """Factory for codes rejected at the current fake time."""
    def _make(secret: str) -> str:
        return wrong_code(secret, clock())
    return _make
