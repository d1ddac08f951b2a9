"""Audit trail rows for billing runs, rent revisions and payment edits."""

from typing import Any

from sqlalchemy import JSON, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from rentbook.models import Base, BaseModel


class AuditLog(Base, BaseModel):
    """One recorded change to a bill, payment, rent revision or billing run.

    ``changes`` is a JSON snapshot of the fields needed to reconstruct the
    change. Money is stored as a decimal string, dates as ISO strings.
    """

    __tablename__ = "audit_logs"
    __table_args__ = (Index("idx_audit_log_entity", "entity_type", "entity_id"),)

    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    """"billing_run", "bill_line", "payment" or "rent_revision"."""

    entity_id: Mapped[int] = mapped_column(nullable=False)

    action: Mapped[str] = mapped_column(String(20), nullable=False)
    """"generate", "create", "update" or "delete"."""

    actor_id: Mapped[int | None] = mapped_column(nullable=True)
    """Operator id supplied by the caller; None for unattended runs."""

    changes: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    @property
    def is_system(self) -> bool:
        return self.actor_id is None

    def __repr__(self) -> str:
        actor = "system" if self.is_system else self.actor_id
        return f"<AuditLog(id={self.id}, {self.action} {self.entity_type}#{self.entity_id} by {actor})>"


__all__ = ["AuditLog"]
