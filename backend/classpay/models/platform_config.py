"""Database model for admin-editable platform settings."""

from datetime import datetime

from sqlalchemy import JSON, DateTime, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from ..database import Base


class PlatformConfig(Base):
    """Key/value configuration stored as JSON; the ``payments`` key holds PaymentSettings."""

    __tablename__ = "platform_config"

    key: Mapped[str] = mapped_column(Text, primary_key=True)
    value_json: Mapped[dict] = mapped_column(JSON, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<PlatformConfig key={self.key}>"


__all__ = ["PlatformConfig"]
