"""players table model."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from models.base import Base


class Player(Base):
    """One player identity with current rating and career counters."""

    __tablename__ = "players"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    steam_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True, index=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    mmr: Mapped[int] = mapped_column(Integer, nullable=False)
    peak_mmr: Mapped[int] = mapped_column(Integer, nullable=False)
    matches_played: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    mmr_updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    total_kills: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_deaths: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_assists: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_airshots: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_headshots: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_backstabs: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_deflects: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_seen: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False),
        nullable=False,
        server_default=func.now(),
    )
