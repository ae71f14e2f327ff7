from .base import SecretStore  # noqa: F401
from .memory import MemorySecretStore  # noqa: F401
from .sqla import (  # noqa: F401
    MFAAuditLog,
    MFABackupCode,
    SQLAAuditSink,
    SQLASecretStore,
    UserMFA,
    create_tables,
)

__all__ = [
    'SecretStore',
    'MemorySecretStore',
    'SQLASecretStore',
    'SQLAAuditSink',
    'UserMFA',
    'MFABackupCode',
    'MFAAuditLog',
    'create_tables',
]
