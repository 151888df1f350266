"""Raffle model: configuration, running totals and draw reservation."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Integer,
    String,
    Text,
    select,
)
from sqlalchemy.orm import Mapped, Session, mapped_column, relationship

from .base import ID_TYPE, Base

if TYPE_CHECKING:
    from .entry import Entry
    from .result import DrawResult, Winner

RAFFLE_TYPES = ("daily", "weekly", "mega", "flash", "monthly")
RAFFLE_STATUSES = (
    "scheduled",
    "active",
    "ending",
    "paused",
    "drawing",
    "completed",
    "cancelled",
)
SEED_MODES = ("block_hash", "crypto")


def _sql_in(values: tuple[str, ...]) -> str:
    return ",".join(f"'{v}'" for v in values)


class Raffle(Base):
    """A time-boxed raffle whose tickets are bought with the settlement token."""

    __tablename__ = "raffles"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    """Primary key."""

    raffle_type: Mapped[str] = mapped_column(String(20), nullable=False)
    """One of ``daily``, ``weekly``, ``mega``, ``flash`` or ``monthly``."""

    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    entry_price: Mapped[int] = mapped_column(BigInteger, nullable=False)
    """Price of one unit in integer minor units of the settlement token."""

    max_entries_per_user: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    """Optional cap on the units a single wallet may hold."""

    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    winner_count: Mapped[int] = mapped_column(Integer, nullable=False)

    prize_tiers: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    """Explicit tier table as a list of ``{"name", "percentage", "winner_count"}``.

    ``None`` selects the default table for ``winner_count``.
    """

    platform_fee_bps: Mapped[int] = mapped_column(Integer, nullable=False, default=1000)
    """Platform fee retained from the gross pool, in basis points."""

    seed_mode: Mapped[str] = mapped_column(String(20), nullable=False, default="block_hash")
    """Randomness source used for the draw: ``block_hash`` or ``crypto``."""

    allow_multiple_wins: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    """When false a wallet can win at most one prize per draw."""

    total_entries: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    """Units sold (non-refunded)."""

    total_participants: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    prize_pool: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    """Gross value collected from entries, in minor units."""

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="scheduled", index=True
    )

    draw_seed: Mapped[Optional[str]] = mapped_column(String(66), nullable=True)
    """Seed reserved for the draw; set once when the raffle enters ``drawing``."""

    draw_block_number: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    draw_block_hash: Mapped[Optional[str]] = mapped_column(String(66), nullable=True)
    draw_started_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    entries: Mapped[list["Entry"]] = relationship(
        back_populates="raffle",
        cascade="all, delete-orphan",
        order_by="Entry.id",
    )
    winners: Mapped[list["Winner"]] = relationship(
        back_populates="raffle",
        cascade="all, delete-orphan",
        order_by="Winner.position",
    )
    draw_result: Mapped[Optional["DrawResult"]] = relationship(
        back_populates="raffle",
        cascade="all, delete-orphan",
        uselist=False,
    )

    __table_args__ = (
        CheckConstraint(f"status IN ({_sql_in(RAFFLE_STATUSES)})", name="status_enum"),
        CheckConstraint(f"raffle_type IN ({_sql_in(RAFFLE_TYPES)})", name="raffle_type_enum"),
        CheckConstraint(f"seed_mode IN ({_sql_in(SEED_MODES)})", name="seed_mode_enum"),
        CheckConstraint("entry_price > 0", name="entry_price_positive"),
        CheckConstraint("winner_count >= 1 AND winner_count <= 100", name="winner_count_range"),
        CheckConstraint(
            "platform_fee_bps >= 0 AND platform_fee_bps <= 1000", name="platform_fee_range"
        ),
        CheckConstraint("end_time > start_time", name="time_window"),
    )

    def __init__(
        self,
        *,
        raffle_type: str,
        title: str,
        entry_price: int,
        start_time: datetime,
        end_time: datetime,
        winner_count: int,
        description: Optional[str] = None,
        max_entries_per_user: Optional[int] = None,
        prize_tiers: Optional[list] = None,
        platform_fee_bps: int = 1000,
        seed_mode: str = "block_hash",
        allow_multiple_wins: bool = False,
        status: str = "scheduled",
        total_entries: int = 0,
        total_participants: int = 0,
        prize_pool: int = 0,
    ) -> None:
        self.raffle_type = raffle_type
        self.title = title
        self.description = description
        self.entry_price = entry_price
        self.max_entries_per_user = max_entries_per_user
        self.start_time = start_time
        self.end_time = end_time
        self.winner_count = winner_count
        self.prize_tiers = prize_tiers
        self.platform_fee_bps = platform_fee_bps
        self.seed_mode = seed_mode
        self.allow_multiple_wins = allow_multiple_wins
        # Set in Python so totals and status are usable before the first flush.
        self.status = status
        self.total_entries = total_entries
        self.total_participants = total_participants
        self.prize_pool = prize_pool

    def __repr__(self) -> str:  # pragma: no cover - repr is trivial
        return "<Raffle(id={id}, type={type}, status={status}, pool={pool})>".format(
            id=self.id,
            type=self.raffle_type,
            status=self.status,
            pool=self.prize_pool,
        )

    @property
    def protocol_fee(self) -> int:
        """Platform share of the gross pool, floored to minor units."""
        return self.prize_pool * self.platform_fee_bps // 10000

    @property
    def net_prize_pool(self) -> int:
        """Amount distributed to winners."""
        return self.prize_pool - self.protocol_fee

    @property
    def is_terminal(self) -> bool:
        return self.status in ("completed", "cancelled")

    @classmethod
    def get_by_id(cls, session: Session, raffle_id: int) -> Optional["Raffle"]:
        return session.get(cls, raffle_id)

    @classmethod
    def get_for_update(cls, session: Session, raffle_id: int) -> Optional["Raffle"]:
        """Load the raffle with a row lock where the backend supports one.

        Attributes already loaded in the session are overwritten with the
        committed row.
        """

        return session.scalar(
            select(cls)
            .where(cls.id == raffle_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )

    @classmethod
    def list_by_status(cls, session: Session, status: str) -> list["Raffle"]:
        return list(
            session.scalars(select(cls).where(cls.status == status).order_by(cls.end_time, cls.id))
        )
