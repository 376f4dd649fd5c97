"""AdminSetting model: generic key/value store backing the Zapier settings."""

from datetime import UTC, datetime

from sqlalchemy import Column, DateTime, String, Text

from app.db.base import Base


class AdminSetting(Base):
    __tablename__ = "admin_settings"

    key = Column(String(128), primary_key=True)
    value = Column(Text, nullable=False, default="")
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )
