"""Payment ORM model for amounts received against bill lines."""

from datetime import date
from decimal import Decimal

from sqlalchemy import Date, ForeignKey, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from rentbook.models import Base, BaseModel


class Payment(Base, BaseModel):
    """Money received from a tenant, optionally linked to a bill line.

    Payments are append-only except for explicit edits and deletes; every
    change must be followed by reconciliation of the affected bill line.
    """

    __tablename__ = "payments"

    bill_line_id: Mapped[int | None] = mapped_column(
        ForeignKey("bill_lines.id"),
        nullable=True,
        index=True,
    )
    tenant_id: Mapped[int | None] = mapped_column(
        ForeignKey("tenants.id"),
        nullable=True,
        index=True,
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    mode: Mapped[str] = mapped_column(String(50), nullable=False, default="")
    reference: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    notes: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    payment_date: Mapped[date] = mapped_column(Date, nullable=False)
    attachment_id: Mapped[int | None] = mapped_column(
        ForeignKey("attachments.id"),
        nullable=True,
    )

    bill_line: Mapped["BillLine | None"] = relationship(  # noqa: F821
        "BillLine",
        back_populates="payments",
    )
    attachment: Mapped["Attachment | None"] = relationship("Attachment")  # noqa: F821

    def __repr__(self) -> str:
        return (
            f"<Payment(id={self.id}, bill_line_id={self.bill_line_id}, amount={self.amount}, "
            f"mode={self.mode}, payment_date={self.payment_date})>"
        )


__all__ = ["Payment"]
