"""Rent revision ORM model: effective-dated rent amounts per tenancy."""

from decimal import Decimal

from sqlalchemy import ForeignKey, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from rentbook.models import Base, BaseModel


class RentRevision(Base, BaseModel):
    """Rent amount applying to a tenancy from `effective_month` onwards.

    At most one row exists per (tenancy_id, effective_month); saving the same
    month again overwrites the row instead of appending a new one.
    """

    __tablename__ = "rent_revisions"

    tenancy_id: Mapped[int] = mapped_column(
        ForeignKey("tenancies.id"),
        nullable=False,
        index=True,
    )
    effective_month: Mapped[str] = mapped_column(
        String(7),
        nullable=False,
        comment="First month (YYYY-MM) from which the rent applies",
    )
    rent_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    note: Mapped[str] = mapped_column(String(500), nullable=False, default="")

    tenancy: Mapped["Tenancy"] = relationship("Tenancy")  # noqa: F821

    __table_args__ = (
        UniqueConstraint("tenancy_id", "effective_month", name="uq_rent_revision_tenancy_month"),
    )

    def __repr__(self) -> str:
        return (
            f"<RentRevision(id={self.id}, tenancy_id={self.tenancy_id}, "
            f"effective_month={self.effective_month}, rent_amount={self.rent_amount})>"
        )


__all__ = ["RentRevision"]
