"""Tenant, unit and tenancy ORM models (reference data for billing)."""

from datetime import date
from decimal import Decimal
from enum import Enum

from sqlalchemy import Boolean, Date, ForeignKey, Index, Integer, Numeric, String
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from rentbook.models import Base, BaseModel


class TenancyStatus(str, Enum):
    """Lifecycle status of a tenancy."""

    ACTIVE = "ACTIVE"
    ENDED = "ENDED"


class Tenant(Base, BaseModel):
    """A person renting one or more units."""

    __tablename__ = "tenants"

    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    mobile: Mapped[str | None] = mapped_column(String(50), nullable=True)

    tenancies: Mapped[list["Tenancy"]] = relationship(
        "Tenancy",
        back_populates="tenant",
    )

    def __repr__(self) -> str:
        return f"<Tenant(id={self.id}, full_name={self.full_name})>"


class Unit(Base, BaseModel):
    """A rentable flat inside a wing."""

    __tablename__ = "units"

    wing: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        index=True,
        comment="Building section used as the billing-batch boundary",
    )
    unit_number: Mapped[str] = mapped_column(String(50), nullable=False)
    floor: Mapped[str | None] = mapped_column(String(20), nullable=True)
    meter_number: Mapped[str | None] = mapped_column(String(50), nullable=True)
    is_occupied: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    current_tenancy_id: Mapped[int | None] = mapped_column(Integer, nullable=True)

    tenancies: Mapped[list["Tenancy"]] = relationship(
        "Tenancy",
        back_populates="unit",
    )

    def __repr__(self) -> str:
        return f"<Unit(id={self.id}, wing={self.wing}, unit_number={self.unit_number})>"


class Tenancy(Base, BaseModel):
    """Model representing a tenant occupying a unit for a period.

    A tenancy is the billing subject: readings, bill lines and rent revisions
    all reference it. Status flips to ENDED when the tenant vacates or when a
    new tenancy supersedes it.
    """

    __tablename__ = "tenancies"

    tenant_id: Mapped[int] = mapped_column(
        ForeignKey("tenants.id"),
        nullable=False,
        index=True,
    )
    unit_id: Mapped[int] = mapped_column(
        ForeignKey("units.id"),
        nullable=False,
        index=True,
    )
    landlord_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    grn_number: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
        index=True,
        comment="Tenancy reference code, alternate matching key for billing entries",
    )
    status: Mapped[TenancyStatus] = mapped_column(
        SQLEnum(TenancyStatus),
        nullable=False,
        default=TenancyStatus.ACTIVE,
    )
    rent_payable_day: Mapped[str | None] = mapped_column(
        String(20),
        nullable=True,
        comment="Day of month the rent falls due",
    )
    late_rent_per_day: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    late_grace_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    default_rent: Mapped[Decimal | None] = mapped_column(
        Numeric(12, 2),
        nullable=True,
        comment="Agreement rent, seeds the first rent revision",
    )
    commencement_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    tenant: Mapped["Tenant"] = relationship("Tenant", back_populates="tenancies")
    unit: Mapped["Unit"] = relationship("Unit", back_populates="tenancies")

    __table_args__ = (Index("idx_tenancy_tenant_status", "tenant_id", "status"),)

    @property
    def is_active(self) -> bool:
        return self.status == TenancyStatus.ACTIVE

    def __repr__(self) -> str:
        return (
            f"<Tenancy(id={self.id}, tenant_id={self.tenant_id}, unit_id={self.unit_id}, "
            f"status={self.status})>"
        )


__all__ = ["Tenancy", "TenancyStatus", "Tenant", "Unit"]
