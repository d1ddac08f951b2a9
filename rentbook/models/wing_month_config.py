"""Per wing/month shared-cost configuration."""

from decimal import Decimal

from sqlalchemy import Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from rentbook.models import Base, BaseModel


class WingMonthConfig(Base, BaseModel):
    """Electricity rate, sweeping charge and motor meter for a wing in a month."""

    __tablename__ = "wing_month_configs"

    month_key: Mapped[str] = mapped_column(String(7), nullable=False, index=True)
    wing: Mapped[str] = mapped_column(String(50), nullable=False)
    electricity_rate: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        default=Decimal("0"),
        comment="Rate per electricity unit",
    )
    sweeping_per_flat: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0")
    )
    motor_prev: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    motor_new: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    motor_units: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        default=Decimal("0"),
        comment="motor_new - motor_prev, may be negative",
    )

    __table_args__ = (UniqueConstraint("month_key", "wing", name="uq_wing_month_config"),)

    def __repr__(self) -> str:
        return (
            f"<WingMonthConfig(id={self.id}, month_key={self.month_key}, wing={self.wing}, "
            f"electricity_rate={self.electricity_rate}, motor_units={self.motor_units})>"
        )


__all__ = ["WingMonthConfig"]
