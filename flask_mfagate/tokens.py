"""
Pending-MFA credentials.

A pending credential bridges a successful password check and the second
factor. It is an HS256 JWT (``header.payload.signature``) signed with a key
that is distinct from the session signing key, prefixed with a literal
``mfa_`` marker that exists only to make it recognizable in logs.
"""

import binascii
import logging
import time
from typing import Any, Callable, Optional

import jwt
from jwt.utils import base64url_decode, base64url_encode

from .exceptions import ExpiredCredentialError, InvalidCredentialError
from .models import PendingIdentity

log = logging.getLogger(__name__)

CREDENTIAL_PREFIX = "mfa_"
TOKEN_TYPE = "mfa_temp"
ALGORITHM = "HS256"


class TokenCodec:
    """
    Issues and validates pending-MFA credentials.

    Stateless: the codec does not enforce single use, callers must discard a
    credential once it has produced a session.
    """

    def __init__(self, secret: str, ttl: int = 300,
                 clock: Optional[Callable[[], float]] = None):
        """
        Args:
            secret: HMAC key, must not be shared with other token types
            ttl: Credential lifetime in seconds. Zero or negative values yield
                credentials that are already expired.
            clock: Returns the current epoch time; defaults to ``time.time``
        """
        if not secret:
            raise ValueError("A signing secret is required for pending credentials")
        self._secret = secret
        self.ttl = ttl
        self._clock = clock or time.time

    def issue(self, user_id: Any, email: str) -> str:
        """
        Create a pending credential for a user who passed primary authentication.

        Args:
            user_id: Opaque user identifier (must be JSON serializable)
            email: User email bound into the payload

        Returns:
            str: ``mfa_<header>.<payload>.<signature>``
        """
        now = int(self._clock())
        payload = {
            'sub': str(user_id),
            'uid': user_id,
            'email': email,
            'type': TOKEN_TYPE,
            'iat': now,
            'exp': now + self.ttl,
        }
        token = jwt.encode(payload, self._secret, algorithm=ALGORITHM)
        return f"{CREDENTIAL_PREFIX}{token}"

    def validate(self, credential: str) -> PendingIdentity:
        """
        Validate a pending credential, with or without the ``mfa_`` prefix.

        Args:
            credential: Credential as returned by :meth:`issue`

        Returns:
            PendingIdentity: The bound user id and email

        A credential is expired from the instant ``now >= exp``, so a codec
        built with a TTL of zero or less issues credentials that never validate.

        Raises:
            InvalidCredentialError: For malformed, tampered, mistyped or
                expired credentials. The message does not say which.
        """
        try:
            return self._decode(credential)
        except InvalidCredentialError as e:
            log.debug(f"Pending MFA credential rejected: {e.reason}")
            raise

    def _decode(self, credential: str) -> PendingIdentity:
        if not isinstance(credential, str) or not credential:
            raise InvalidCredentialError(reason="malformed")

        token = credential
        if token.startswith(CREDENTIAL_PREFIX):
            token = token[len(CREDENTIAL_PREFIX):]
        segments = token.split('.')
        if len(segments) != 3:
            raise InvalidCredentialError(reason="malformed")
        if not _is_canonical_segment(segments[2]):
            raise InvalidCredentialError(reason="bad_signature")

        try:
            # Expiry is checked against the injected clock below
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[ALGORITHM],
                options={
                    'verify_exp': False,
                    'verify_iat': False,
                    'require': ['sub', 'exp', 'iat'],
                },
            )
        except jwt.InvalidSignatureError:
            log.warning("Pending MFA credential with a bad signature presented")
            raise InvalidCredentialError(reason="bad_signature")
        except jwt.PyJWTError:
            raise InvalidCredentialError(reason="malformed")

        if payload.get('type') != TOKEN_TYPE:
            raise InvalidCredentialError(reason="wrong_type")

        expires_at = payload['exp']
        if not isinstance(expires_at, int) or self._clock() >= expires_at:
            raise ExpiredCredentialError()

        return PendingIdentity(
            user_id=payload.get('uid', payload['sub']),
            email=payload.get('email', ''),
            issued_at=payload['iat'],
            expires_at=expires_at,
        )


def _is_canonical_segment(segment: str) -> bool:
    """Reject base64url text whose unused trailing bits were altered."""
    try:
        raw = base64url_decode(segment)
    except (binascii.Error, ValueError):
        return False
    return base64url_encode(raw).decode('ascii') == segment
