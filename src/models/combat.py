"""kills, airshots and deflects table models."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from models.base import Base


class CombatEventMixin:
    """Columns shared by every per-match combat detail table."""

    event_id: Mapped[int] = mapped_column(ForeignKey("events.id"), nullable=False, unique=True)
    match_id: Mapped[int] = mapped_column(ForeignKey("matches.id"), nullable=False, index=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)


class Kill(CombatEventMixin, Base):
    __tablename__ = "kills"
    __table_args__ = (
        Index("idx_kills_killer", "killer_id"),
        Index("idx_kills_victim", "victim_id"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    killer_id: Mapped[int] = mapped_column(ForeignKey("players.id"), nullable=False)
    victim_id: Mapped[int] = mapped_column(ForeignKey("players.id"), nullable=False)
    assister_id: Mapped[int | None] = mapped_column(ForeignKey("players.id"), nullable=True)
    weapon: Mapped[str] = mapped_column(String(128), nullable=False)
    weapon_item_def_index: Mapped[int | None] = mapped_column(Integer, nullable=True)
    crit: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    airborne: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    headshot: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    backstab: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    first_blood: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    killer_pos_x: Mapped[float | None] = mapped_column(Float, nullable=True)
    killer_pos_y: Mapped[float | None] = mapped_column(Float, nullable=True)
    killer_pos_z: Mapped[float | None] = mapped_column(Float, nullable=True)
    victim_pos_x: Mapped[float | None] = mapped_column(Float, nullable=True)
    victim_pos_y: Mapped[float | None] = mapped_column(Float, nullable=True)
    victim_pos_z: Mapped[float | None] = mapped_column(Float, nullable=True)


class Airshot(CombatEventMixin, Base):
    __tablename__ = "airshots"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    player_id: Mapped[int] = mapped_column(ForeignKey("players.id"), nullable=False, index=True)
    victim_id: Mapped[int] = mapped_column(ForeignKey("players.id"), nullable=False)
    weapon_type: Mapped[str] = mapped_column(String(64), nullable=False)
    air2air: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    height: Mapped[float | None] = mapped_column(Float, nullable=True)


class Deflect(CombatEventMixin, Base):
    __tablename__ = "deflects"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    player_id: Mapped[int] = mapped_column(ForeignKey("players.id"), nullable=False, index=True)
    owner_id: Mapped[int | None] = mapped_column(ForeignKey("players.id"), nullable=True)
    projectile_type: Mapped[str | None] = mapped_column(String(64), nullable=True)
    rocket_speed: Mapped[float | None] = mapped_column(Float, nullable=True)
    deflect_angle: Mapped[float | None] = mapped_column(Float, nullable=True)
    timing_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    distance: Mapped[float | None] = mapped_column(Float, nullable=True)
