"""
Secret store interface.

The store is the system of record for enrollments. Implementations must make
:meth:`SecretStore.consume_backup_code` a conditional update so a code can be
consumed at most once under concurrent requests, and must raise
:class:`~flask_mfagate.exceptions.StorageUnavailableError` on backend failure.
"""

from abc import ABC, abstractmethod
from typing import Any, List, Optional

from ..models import BackupCode, MFAEnrollment


class SecretStore(ABC):

    @abstractmethod
    def get_enrollment(self, user_id: Any) -> Optional[MFAEnrollment]:
        """Return the user's enrollment, or None if there is none."""

    @abstractmethod
    def save_pending_enrollment(self, user_id: Any, secret: str,
                                code_hashes: List[str]) -> bool:
        """
        Store a new unconfirmed enrollment, replacing any pending secret and
        backup codes the user had.

        The enabled check and the write must be one atomic step: an enabled
        enrollment is never overwritten.

        Returns:
            bool: False if the user's enrollment is already enabled
        """

    @abstractmethod
    def enable(self, user_id: Any, secret: str) -> bool:
        """
        Flip a pending enrollment to enabled, provided its secret is still
        ``secret``.

        Args:
            user_id: User confirming setup
            secret: The pending secret the confirmation code was checked against

        Returns:
            bool: False if there was no pending enrollment, it is already
                enabled, or its secret was replaced in the meantime
        """

    @abstractmethod
    def unconsumed_backup_codes(self, user_id: Any) -> List[BackupCode]:
        pass

    @abstractmethod
    def consume_backup_code(self, user_id: Any, code_id: Any) -> bool:
        """
        Mark one code consumed if it is still unconsumed.

        Returns:
            bool: True only for the caller that performed the transition
        """

    def count_unconsumed_backup_codes(self, user_id: Any) -> int:
        return len(self.unconsumed_backup_codes(user_id))
