"""Audit trail for billing runs, rent revisions and payment edits.

Entries are added to the caller's session and commit together with the
change they describe, so a rolled-back billing run leaves no audit row.
"""

from datetime import date
from decimal import Decimal
from typing import Any, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from rentbook.models.audit_log import AuditLog


def to_json_value(value: Any) -> Any:
    """Convert a change snapshot into values a JSON column accepts.

    Decimal amounts become strings (no float rounding), dates and datetimes
    become ISO strings, and sets become sorted lists.

    >>> to_json_value({"amount": Decimal("5800.00"), "ids": {3, 1}})
    {'amount': '5800.00', 'ids': [1, 3]}
    """
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(key): to_json_value(item) for key, item in value.items()}
    if isinstance(value, set):
        return [to_json_value(item) for item in sorted(value)]
    if isinstance(value, (list, tuple)):
        return [to_json_value(item) for item in value]
    return value


class AuditService:
    """Writes and reads audit entries."""

    @staticmethod
    def log(
        db: Session,
        entity_type: str,
        entity_id: int,
        action: str,
        actor_id: Optional[int] = None,
        changes: Optional[dict] = None,
    ) -> AuditLog:
        """Add an audit entry to the session.

        Args:
            db: Database session; the caller commits
            entity_type: "billing_run", "bill_line", "payment" or "rent_revision"
            entity_id: Primary key of the entity
            action: "generate", "create", "update" or "delete"
            actor_id: Operator who made the change (None for unattended runs)
            changes: Snapshot of the affected fields, Decimal and date values allowed

        Returns:
            The pending AuditLog
        """
        audit = AuditLog(
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            actor_id=actor_id,
            changes=to_json_value(changes) if changes is not None else None,
        )
        db.add(audit)
        return audit

    @staticmethod
    def history(db: Session, entity_type: str, entity_id: int) -> List[AuditLog]:
        """Entries for one entity, oldest first."""
        stmt = (
            select(AuditLog)
            .where(AuditLog.entity_type == entity_type, AuditLog.entity_id == entity_id)
            .order_by(AuditLog.id)
        )
        return list(db.execute(stmt).scalars().all())


__all__ = ["AuditService", "to_json_value"]
