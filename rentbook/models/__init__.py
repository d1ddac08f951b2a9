"""SQLAlchemy base model with common fields and model exports."""

from datetime import datetime, timezone

from sqlalchemy import DateTime
from sqlalchemy.orm import Mapped, declarative_base, mapped_column

# Base class for all models
Base = declarative_base()


class BaseModel:
    """Base model with common timestamp fields."""

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )


# Import models to register them with Base (after Base is defined)
# This must be after Base declaration to avoid circular imports
from rentbook.models.attachment import Attachment  # noqa: E402
from rentbook.models.audit_log import AuditLog  # noqa: E402
from rentbook.models.bill_line import BillLine  # noqa: E402
from rentbook.models.payment import Payment  # noqa: E402
from rentbook.models.rent_revision import RentRevision  # noqa: E402
from rentbook.models.tenancy import Tenancy, TenancyStatus, Tenant, Unit  # noqa: E402
from rentbook.models.tenant_monthly_reading import TenantMonthlyReading  # noqa: E402
from rentbook.models.wing_month_config import WingMonthConfig  # noqa: E402

__all__ = [
    "Base",
    "BaseModel",
    "Attachment",
    "AuditLog",
    "BillLine",
    "Payment",
    "RentRevision",
    "Tenancy",
    "TenancyStatus",
    "Tenant",
    "TenantMonthlyReading",
    "Unit",
    "WingMonthConfig",
]
