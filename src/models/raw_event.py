"""events table model."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import Boolean, DateTime, Index, String, false, func
from sqlalchemy.orm import Mapped, mapped_column

from models.base import Base, JsonDocument


class RawEvent(Base):
    """Every decoded event as received, before routing."""

    __tablename__ = "events"
    __table_args__ = (
        Index("idx_events_server_timestamp", "server_ip", "timestamp"),
        Index("idx_events_type", "event_type"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    event_type: Mapped[str] = mapped_column(String(32), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    server_ip: Mapped[str] = mapped_column(String(128), nullable=False)
    gamemode: Mapped[str] = mapped_column(String(64), nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(JsonDocument, nullable=False)
    processed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=false())
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False),
        nullable=False,
        server_default=func.now(),
    )
