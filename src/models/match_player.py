"""match_players table model."""

from __future__ import annotations

from sqlalchemy import CheckConstraint, ForeignKey, Index, Integer, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from models.base import Base


class MatchPlayer(Base):
    """Roster entry: which side a player was on in a match, and its rating outcome."""

    __tablename__ = "match_players"
    __table_args__ = (
        UniqueConstraint("match_id", "player_id", name="uq_match_players_match_player"),
        CheckConstraint("team IN (2, 3)", name="ck_match_players_team"),
        Index("idx_match_players_match_team", "match_id", "team"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    match_id: Mapped[int] = mapped_column(ForeignKey("matches.id"), nullable=False)
    player_id: Mapped[int] = mapped_column(ForeignKey("players.id"), nullable=False)
    team: Mapped[int] = mapped_column(Integer, nullable=False)
    mmr_before: Mapped[int | None] = mapped_column(Integer, nullable=True)
    mmr_after: Mapped[int | None] = mapped_column(Integer, nullable=True)
    mmr_change: Mapped[int | None] = mapped_column(Integer, nullable=True)
