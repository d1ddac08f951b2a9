"""Bill line ORM model: one generated monthly bill per tenancy."""

from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from rentbook.models import Base, BaseModel


class BillLine(Base, BaseModel):
    """
    Monthly bill of a tenancy: rent plus its share of electricity, motor and sweeping.

    Component amounts keep 2 decimal places while total_amount is a whole
    currency unit. amount_paid and is_paid are NULL until the bill has been
    reconciled against payments.
    """

    __tablename__ = "bill_lines"

    month_key: Mapped[str] = mapped_column(String(7), nullable=False, index=True)
    tenancy_id: Mapped[int] = mapped_column(
        ForeignKey("tenancies.id"),
        nullable=False,
        index=True,
    )

    rent_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    electricity_units: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0")
    )
    electricity_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0")
    )
    motor_share_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0")
    )
    sweep_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    total_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        default=Decimal("0"),
        comment="Rounded to the nearest whole currency unit",
    )
    payable_date: Mapped[str] = mapped_column(String(20), nullable=False, default="")
    generated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    amount_paid: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    is_paid: Mapped[bool | None] = mapped_column(Boolean, nullable=True)

    tenancy: Mapped["Tenancy"] = relationship("Tenancy")  # noqa: F821
    payments: Mapped[list["Payment"]] = relationship(  # noqa: F821
        "Payment",
        back_populates="bill_line",
    )

    __table_args__ = (
        UniqueConstraint("month_key", "tenancy_id", name="uq_bill_line_month_tenancy"),
        Index("idx_bill_line_paid", "is_paid"),
    )

    def __repr__(self) -> str:
        return (
            f"<BillLine(id={self.id}, month_key={self.month_key}, tenancy_id={self.tenancy_id}, "
            f"total_amount={self.total_amount}, amount_paid={self.amount_paid}, "
            f"is_paid={self.is_paid})>"
        )


__all__ = ["BillLine"]
