"""Tenant meter reading for a billing month."""

from decimal import Decimal

from sqlalchemy import Boolean, ForeignKey, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from rentbook.models import Base, BaseModel


class TenantMonthlyReading(Base, BaseModel):
    """Meter readings and shared-cost participation of a tenancy for one month."""

    __tablename__ = "tenant_monthly_readings"

    month_key: Mapped[str] = mapped_column(String(7), nullable=False, index=True)
    tenancy_id: Mapped[int] = mapped_column(
        ForeignKey("tenancies.id"),
        nullable=False,
        index=True,
    )
    prev_reading: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    new_reading: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    included: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        comment="Tenancy takes part in shared-cost billing this month",
    )
    override_rent: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    notes: Mapped[str] = mapped_column(String(500), nullable=False, default="")

    __table_args__ = (
        UniqueConstraint("month_key", "tenancy_id", name="uq_reading_month_tenancy"),
    )

    def __repr__(self) -> str:
        return (
            f"<TenantMonthlyReading(id={self.id}, month_key={self.month_key}, "
            f"tenancy_id={self.tenancy_id}, included={self.included})>"
        )


__all__ = ["TenantMonthlyReading"]
