"""
Audit logging for reconciliation decisions.
"""

from collections import Counter
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

import structlog

from ..models import AuditAction, AuditEntry

logger = structlog.get_logger()


class AuditLogger:
    """
    Collects the audit trail of one reconciliation run.

    Entries are kept in memory and echoed to structlog. Persisting them is
    left to the caller (see `export`).
    """

    def __init__(self, run_id: str):
        self.run_id = run_id
        self.entries: List[AuditEntry] = []

    def log(self, entry: AuditEntry) -> None:
        """Add an audit entry."""
        self.entries.append(entry)

        # Also log to structlog
        log_method = logger.info if entry.success else logger.warning
        log_method(
            entry.message,
            run_id=self.run_id,
            action=entry.action.value,
            transaction_ids=entry.transaction_ids,
            file_name=entry.file_name,
            success=entry.success,
        )

    def record(
        self,
        action: AuditAction,
        message: str,
        transaction_ids: Optional[List[str]] = None,
        file_name: Optional[str] = None,
        success: bool = True,
        **details: Any,
    ) -> AuditEntry:
        """Build and log an entry in one call."""
        entry = AuditEntry(
            action=action,
            message=message,
            transaction_ids=list(transaction_ids or []),
            file_name=file_name,
            details=details,
            success=success,
        )
        self.log(entry)
        return entry

    def log_many(self, entries: List[AuditEntry]) -> None:
        """Add multiple audit entries."""
        for entry in entries:
            self.log(entry)

    def get_entries(
        self,
        action_filter: Optional[Union[str, AuditAction]] = None,
        success_only: bool = False,
    ) -> List[AuditEntry]:
        """Get filtered audit entries."""
        entries = self.entries

        if action_filter:
            wanted = AuditAction(action_filter)
            entries = [e for e in entries if e.action == wanted]

        if success_only:
            entries = [e for e in entries if e.success]

        return entries

    def export(self) -> Dict[str, Any]:
        """Serializable snapshot of the audit trail."""
        return {
            "run_id": self.run_id,
            "exported_at": datetime.utcnow().isoformat(),
            "total_entries": len(self.entries),
            "entries": [
                {
                    "id": e.id,
                    "timestamp": e.timestamp.isoformat(),
                    "action": e.action.value,
                    "transaction_ids": e.transaction_ids,
                    "file_name": e.file_name,
                    "message": e.message,
                    "details": e.details,
                    "success": e.success,
                }
                for e in self.entries
            ],
        }

    def summary(self) -> dict:
        """Get summary statistics of audit log."""
        action_counts = Counter(e.action.value for e in self.entries)
        success_count = sum(1 for e in self.entries if e.success)
        error_count = sum(1 for e in self.entries if not e.success)

        return {
            "total_entries": len(self.entries),
            "success_count": success_count,
            "error_count": error_count,
            "action_counts": dict(action_counts),
        }
