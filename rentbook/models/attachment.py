"""Attachment ORM model for payment proof files."""

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from rentbook.models import Base, BaseModel


class Attachment(Base, BaseModel):
    """Stored payment proof (receipt photo, bank slip)."""

    __tablename__ = "attachments"

    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    file_path: Mapped[str] = mapped_column(String(1000), nullable=False)
    content_type: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        default="application/octet-stream",
    )

    def __repr__(self) -> str:
        return f"<Attachment(id={self.id}, file_name={self.file_name})>"


__all__ = ["Attachment"]
