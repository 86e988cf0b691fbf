from datetime import datetime
from sqlalchemy import JSON, String, DateTime, Float, ForeignKey, Integer
from sqlalchemy.orm import Mapped, mapped_column

from uptimeguard.database import Base


class UptimeStatsRecord(Base):
    """Cached stats projection, one row per monitor and period."""

    __tablename__ = "uptime_stats"

    monitor_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("monitors.id", ondelete="CASCADE"), primary_key=True
    )
    period: Mapped[str] = mapped_column(String(10), primary_key=True)
    uptime_percentage: Mapped[float] = mapped_column(Float, nullable=False)
    total_checks: Mapped[int] = mapped_column(Integer, default=0)
    successful_checks: Mapped[int] = mapped_column(Integer, default=0)
    failed_checks: Mapped[int] = mapped_column(Integer, default=0)
    avg_response_time: Mapped[float] = mapped_column(Float, default=0.0)
    incidents: Mapped[list] = mapped_column(JSON, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
