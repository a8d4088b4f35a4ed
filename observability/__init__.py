"""
Observability for the trade decision pipeline.

Public API:
    - AuditLog, InMemoryAuditLog, SQLiteAuditLog: append-only audit trail
    - execution_logger: structured ``EXECUTION_EVENT`` lines
"""

from observability.audit_log import AuditEntry, AuditLog, InMemoryAuditLog, SQLiteAuditLog
from observability.execution_logging import ExecutionLogger, execution_logger

__all__ = [
    "AuditEntry",
    "AuditLog",
    "ExecutionLogger",
    "InMemoryAuditLog",
    "SQLiteAuditLog",
    "execution_logger",
]
