import uuid
from datetime import datetime, timezone
from sqlalchemy import JSON, String, Boolean, DateTime, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from uptimeguard.database import Base


class MonitorRecord(Base):
    __tablename__ = "monitors"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    url: Mapped[str] = mapped_column(Text, nullable=False)
    type: Mapped[str] = mapped_column(String(20), default="HTTP")
    interval: Mapped[int] = mapped_column(Integer, default=60)  # seconds
    timeout: Mapped[int] = mapped_column(Integer, default=30)  # seconds
    method: Mapped[str] = mapped_column(String(10), default="GET")
    expected_status_code: Mapped[int] = mapped_column(Integer, default=200)
    expected_string: Mapped[str | None] = mapped_column(Text, nullable=True)
    ssl_check: Mapped[bool] = mapped_column(Boolean, default=True)
    ssl_expiry_warning_days: Mapped[int] = mapped_column(Integer, default=30)
    retries: Mapped[int] = mapped_column(Integer, default=0)
    retry_interval: Mapped[int] = mapped_column(Integer, default=30)  # seconds
    tags: Mapped[list] = mapped_column(JSON, default=list)
    notifications: Mapped[list] = mapped_column(JSON, default=list)
    advanced_settings: Mapped[dict] = mapped_column(JSON, default=dict)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    last_push_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
