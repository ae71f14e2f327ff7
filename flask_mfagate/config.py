"""
MFA configuration for Flask-MFAGate.

Settings are read from a Flask ``app.config`` (or any mapping) using the
upper-case keys below. Copy the template into your application's config.py
and modify as needed.
"""

from dataclasses import dataclass, fields
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .exceptions import ConfigurationError

# MFA Configuration Settings
# ==========================

# Pending Credential
# ------------------
MFA_TOKEN_SECRET = None  # HMAC key for pending credentials, distinct from SECRET_KEY
MFA_TOKEN_TTL = 300  # Pending credential lifetime in seconds (5 minutes)

# Lockout Policy
# --------------
MFA_MAX_ATTEMPTS = 5  # Failed verifications before lockout
MFA_LOCKOUT_DURATION = 900  # Lockout duration in seconds (15 minutes)
MFA_REVEAL_LOCKOUT_EXPIRY = False  # Include unlock time in lockout responses
MFA_REDIS_URL = None  # Share lockout counters between instances, e.g. "redis://localhost:6379/0"

# TOTP Configuration
# ------------------
MFA_TOTP_ISSUER = "CoreApp"  # Name shown in authenticator apps
MFA_TOTP_WINDOW = 1  # Time step tolerance (±30 seconds per step)

# Backup Codes
# ------------
MFA_BACKUP_CODE_COUNT = 10
MFA_BACKUP_CODE_LENGTH = 8
MFA_BACKUP_CODE_HASH_METHOD = "scrypt"  # Any werkzeug.security hash method

# Storage
# -------
MFA_SECRET_ENCRYPTION_KEY = None  # Fernet key, encrypts TOTP secrets at rest


@dataclass(frozen=True)
class MFAConfig:
    """Immutable view of the MFA settings consumed by the components."""

    token_secret: str
    token_ttl: int = MFA_TOKEN_TTL
    max_attempts: int = MFA_MAX_ATTEMPTS
    lockout_duration: int = MFA_LOCKOUT_DURATION
    reveal_lockout_expiry: bool = MFA_REVEAL_LOCKOUT_EXPIRY
    totp_issuer: str = MFA_TOTP_ISSUER
    totp_window: int = MFA_TOTP_WINDOW
    backup_code_count: int = MFA_BACKUP_CODE_COUNT
    backup_code_length: int = MFA_BACKUP_CODE_LENGTH
    backup_code_hash_method: str = MFA_BACKUP_CODE_HASH_METHOD
    secret_encryption_key: Optional[str] = MFA_SECRET_ENCRYPTION_KEY
    redis_url: Optional[str] = MFA_REDIS_URL

    @classmethod
    def from_mapping(cls, config: Mapping[str, Any]) -> "MFAConfig":
        """
        Build a config from Flask-style upper-case keys.

        Args:
            config: ``app.config`` or any mapping

        Returns:
            MFAConfig

        Raises:
            ConfigurationError: If the settings do not validate
        """
        is_valid, errors = validate_mfa_config(config)
        if not is_valid:
            raise ConfigurationError("; ".join(errors))

        values = {}
        for f in fields(cls):
            key = f"MFA_{f.name.upper()}"
            if key in config:
                values[f.name] = config[key]
        return cls(**values)


def get_mfa_config_template() -> Dict[str, Any]:
    """
    Get a template configuration dictionary for MFA.

    Returns:
        Dictionary with MFA configuration template
    """
    return {
        # Core settings
        'MFA_TOKEN_SECRET': None,  # Set to a long random value
        'MFA_TOKEN_TTL': MFA_TOKEN_TTL,
        'MFA_TOTP_ISSUER': MFA_TOTP_ISSUER,
        'MFA_TOTP_WINDOW': MFA_TOTP_WINDOW,

        # Security settings
        'MFA_MAX_ATTEMPTS': MFA_MAX_ATTEMPTS,
        'MFA_LOCKOUT_DURATION': MFA_LOCKOUT_DURATION,
        'MFA_REVEAL_LOCKOUT_EXPIRY': MFA_REVEAL_LOCKOUT_EXPIRY,

        # Backup codes
        'MFA_BACKUP_CODE_COUNT': MFA_BACKUP_CODE_COUNT,
        'MFA_BACKUP_CODE_LENGTH': MFA_BACKUP_CODE_LENGTH,
        'MFA_BACKUP_CODE_HASH_METHOD': MFA_BACKUP_CODE_HASH_METHOD,

        # Optional backends (uncomment and configure as needed)
        # 'MFA_SECRET_ENCRYPTION_KEY': 'fernet-key',
        # 'MFA_REDIS_URL': 'redis://localhost:6379/0',
    }


def validate_mfa_config(config: Mapping[str, Any]) -> Tuple[bool, List[str]]:
    """
    Validate MFA configuration.

    Args:
        config: Configuration mapping to validate

    Returns:
        Tuple of (is_valid, errors_list)
    """
    errors = []

    token_secret = config.get('MFA_TOKEN_SECRET')
    if not token_secret:
        errors.append("MFA_TOKEN_SECRET is required to sign pending MFA credentials")
    else:
        for other in ('SECRET_KEY', 'JWT_SECRET_KEY'):
            if config.get(other) and config.get(other) == token_secret:
                errors.append(f"MFA_TOKEN_SECRET must differ from {other}")

    for key in ('MFA_MAX_ATTEMPTS', 'MFA_LOCKOUT_DURATION', 'MFA_BACKUP_CODE_COUNT',
                'MFA_BACKUP_CODE_LENGTH'):
        value = config.get(key)
        if value is not None and (not isinstance(value, int) or value < 1):
            errors.append(f"{key} must be a positive integer")

    # A non-positive TTL is allowed and yields credentials that are born expired
    ttl = config.get('MFA_TOKEN_TTL')
    if ttl is not None and not isinstance(ttl, int):
        errors.append("MFA_TOKEN_TTL must be an integer number of seconds")

    window = config.get('MFA_TOTP_WINDOW')
    if window is not None and (not isinstance(window, int) or window < 0):
        errors.append("MFA_TOTP_WINDOW must be a non-negative integer")

    if 'MFA_TOTP_ISSUER' in config and not config.get('MFA_TOTP_ISSUER'):
        errors.append("MFA_TOTP_ISSUER should be set to your application name")

    return len(errors) == 0, errors


def get_required_packages() -> Dict[str, List[str]]:
    """
    Get list of required packages for MFA functionality.

    Returns:
        Dictionary with package requirements by feature
    """
    return {
        'core': ['pyotp', 'PyJWT', 'Werkzeug', 'Flask', 'SQLAlchemy', 'cryptography'],
        'redis': ['redis'],
        'qr': ['qrcode[pil]', 'Pillow'],
        'all': ['pyotp', 'PyJWT', 'Werkzeug', 'Flask', 'SQLAlchemy', 'cryptography',
                'redis', 'qrcode[pil]', 'Pillow'],
    }
