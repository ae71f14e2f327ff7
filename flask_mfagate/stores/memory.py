"""In-process secret store for single-instance deployments and tests."""

import copy
import hmac
import threading
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ..models import BackupCode, MFAEnrollment
from .base import SecretStore


class MemorySecretStore(SecretStore):

    def __init__(self):
        self._enrollments: Dict[Any, MFAEnrollment] = {}
        self._lock = threading.Lock()

    def get_enrollment(self, user_id: Any) -> Optional[MFAEnrollment]:
        with self._lock:
            enrollment = self._enrollments.get(user_id)
            # callers get a snapshot, mutations go through the store
            return copy.deepcopy(enrollment)

    def save_pending_enrollment(self, user_id: Any, secret: str,
                                code_hashes: List[str]) -> bool:
        codes = [BackupCode(code_hash=h, id=index) for index, h in enumerate(code_hashes)]
        with self._lock:
            current = self._enrollments.get(user_id)
            if current is not None and current.enabled:
                return False
            self._enrollments[user_id] = MFAEnrollment(
                user_id=user_id, secret=secret, enabled=False, backup_codes=codes
            )
            return True

    def enable(self, user_id: Any, secret: str) -> bool:
        with self._lock:
            enrollment = self._enrollments.get(user_id)
            if enrollment is None or enrollment.enabled or not enrollment.secret:
                return False
            if not hmac.compare_digest(enrollment.secret, secret):
                return False
            enrollment.enabled = True
            return True

    def unconsumed_backup_codes(self, user_id: Any) -> List[BackupCode]:
        with self._lock:
            enrollment = self._enrollments.get(user_id)
            if enrollment is None:
                return []
            return [copy.copy(code) for code in enrollment.backup_codes if not code.consumed]

    def consume_backup_code(self, user_id: Any, code_id: Any) -> bool:
        with self._lock:
            enrollment = self._enrollments.get(user_id)
            if enrollment is None:
                return False
            for code in enrollment.backup_codes:
                if code.id == code_id:
                    if code.consumed:
                        return False
                    code.consumed = True
                    code.consumed_at = datetime.now(timezone.utc)
                    return True
            return False
