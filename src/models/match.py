"""matches table model."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Index, Integer, String, false, func, text
from sqlalchemy.orm import Mapped, mapped_column

from models.base import Base


class Match(Base):
    """One match on one server; ``ended_at IS NULL`` while it is open."""

    __tablename__ = "matches"
    __table_args__ = (
        # At most one open match per server.
        Index(
            "uq_matches_open_per_server",
            "server_ip",
            unique=True,
            postgresql_where=text("ended_at IS NULL"),
            sqlite_where=text("ended_at IS NULL"),
        ),
        Index("idx_matches_server_started", "server_ip", "started_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    server_ip: Mapped[str] = mapped_column(String(128), nullable=False)
    map_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    gamemode: Mapped[str | None] = mapped_column(String(64), nullable=True)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    ended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    end_event_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    duration_seconds: Mapped[int | None] = mapped_column(Integer, nullable=True)
    winner_team: Mapped[int | None] = mapped_column(Integer, nullable=True)
    red_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    blu_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    rated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=false())
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False),
        nullable=False,
        server_default=func.now(),
    )
