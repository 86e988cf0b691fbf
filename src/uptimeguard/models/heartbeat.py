import uuid
from datetime import datetime, timezone
from sqlalchemy import JSON, String, DateTime, Integer, ForeignKey, Text, Index
from sqlalchemy.orm import Mapped, mapped_column

from uptimeguard.database import Base


class HeartbeatRecord(Base):
    __tablename__ = "heartbeats"
    __table_args__ = (
        Index("ix_heartbeats_monitor_created", "monitor_id", "created_at"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    monitor_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("monitors.id", ondelete="CASCADE"), nullable=False
    )
    status: Mapped[str] = mapped_column(String(20), nullable=False)  # UP, DOWN, ...
    response_time: Mapped[int | None] = mapped_column(Integer, nullable=True)  # ms
    status_code: Mapped[int | None] = mapped_column(Integer, nullable=True)
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    ssl_info: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), index=True
    )
