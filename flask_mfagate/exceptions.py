"""
Exception hierarchy for Flask-MFAGate.

Every error carries a stable ``kind`` (used by HTTP layers and audit trails)
and a ``public_message`` that is safe to show to the end user. Messages never
reveal *why* a credential or code was rejected beyond what the user needs.
"""

from typing import Optional


class MFAError(Exception):
    """Base exception for MFA errors."""

    kind = "mfa_error"
    public_message = "Multi-factor authentication failed"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.public_message)


class InvalidCredentialError(MFAError):
    """Pending credential is malformed, tampered with, or expired."""

    kind = "invalid_credential"
    public_message = "Invalid or expired credential"

    def __init__(self, reason: str = "invalid"):
        # reason is for internal logging only, the message stays generic
        super().__init__()
        self.reason = reason


class ExpiredCredentialError(InvalidCredentialError):
    """Internal refinement of :class:`InvalidCredentialError`."""

    def __init__(self):
        super().__init__(reason="expired")


class LockedOutError(MFAError):
    """Too many failed verification attempts."""

    kind = "locked_out"
    public_message = "Too many attempts, try again later"

    def __init__(self, locked_until: Optional[float] = None):
        super().__init__()
        self.locked_until = locked_until


class NotConfiguredError(MFAError):
    """MFA is not enabled for this user. Never counted as a user failure."""

    kind = "not_configured"
    public_message = "MFA is not configured for this user"


class InvalidCodeError(MFAError):
    """Submitted TOTP or backup code did not match."""

    kind = "invalid_code"

    def __init__(self, remaining_attempts: Optional[int] = None):
        self.remaining_attempts = remaining_attempts
        if remaining_attempts is None:
            message = "Invalid code"
        else:
            message = f"Invalid code, {remaining_attempts} attempts remaining"
        super().__init__(message)

    @property
    def public_message(self) -> str:
        return str(self)


class AlreadyEnabledError(MFAError):
    kind = "already_enabled"
    public_message = "MFA is already enabled. Disable it first to set up again."


class SetupNotInitiatedError(MFAError):
    kind = "setup_not_initiated"
    public_message = "MFA setup has not been initiated"


class StorageUnavailableError(MFAError):
    """The secret store or attempt store could not be reached."""

    kind = "storage_unavailable"
    public_message = "Service temporarily unavailable"


class ConfigurationError(MFAError):
    kind = "configuration_error"
    public_message = "MFA is misconfigured"
