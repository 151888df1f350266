"""Draw outcome models: the immutable draw result and its winner rows."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    select,
)
from sqlalchemy.orm import Mapped, Session, mapped_column, relationship

from .base import ID_TYPE, Base

if TYPE_CHECKING:
    from .payout import PayoutRecord
    from .raffle import Raffle

PAYOUT_STATUSES = ("pending", "processing", "paid", "failed")


class DrawResult(Base):
    """Created exactly once per raffle when its draw completes."""

    __tablename__ = "draw_results"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)

    raffle_id: Mapped[int] = mapped_column(
        ID_TYPE, ForeignKey("raffles.id", ondelete="CASCADE"), nullable=False
    )
    """Owning raffle. Unique: a raffle has at most one draw result."""

    seed: Mapped[str] = mapped_column(String(66), nullable=False)
    """Hex seed every winner was derived from."""

    seed_mode: Mapped[str] = mapped_column(String(20), nullable=False)
    block_number: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    """Block that produced a ``block_hash`` seed, for third-party re-verification."""

    block_hash: Mapped[Optional[str]] = mapped_column(String(66), nullable=True)
    total_tickets: Mapped[int] = mapped_column(Integer, nullable=False)
    prize_pool: Mapped[int] = mapped_column(BigInteger, nullable=False)
    """Net prize pool that was split across the winners."""

    total_prize_distributed: Mapped[int] = mapped_column(BigInteger, nullable=False)
    """Sum of winner amounts; may trail ``prize_pool`` by floor rounding."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    raffle: Mapped["Raffle"] = relationship(back_populates="draw_result")
    winners: Mapped[list["Winner"]] = relationship(
        back_populates="draw_result",
        order_by="Winner.position",
    )

    __table_args__ = (UniqueConstraint("raffle_id"),)

    def __repr__(self) -> str:  # pragma: no cover - repr is trivial
        return "<DrawResult(id={id}, raffle_id={raffle}, seed={seed}, tickets={tickets})>".format(
            id=self.id,
            raffle=self.raffle_id,
            seed=self.seed,
            tickets=self.total_tickets,
        )

    @classmethod
    def get_by_raffle_id(cls, session: Session, raffle_id: int) -> Optional["DrawResult"]:
        return session.scalar(select(cls).where(cls.raffle_id == raffle_id))


class Winner(Base):
    """One selected ticket and the prize attached to it.

    ``payout_status`` is the only field that changes after creation.
    """

    __tablename__ = "raffle_winners"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    raffle_id: Mapped[int] = mapped_column(
        ID_TYPE, ForeignKey("raffles.id", ondelete="CASCADE"), nullable=False, index=True
    )
    draw_result_id: Mapped[int] = mapped_column(
        ID_TYPE, ForeignKey("draw_results.id", ondelete="CASCADE"), nullable=False, index=True
    )

    position: Mapped[int] = mapped_column(Integer, nullable=False)
    """1-based rank after sorting winning ticket indices ascending."""

    wallet_address: Mapped[str] = mapped_column(String(42), nullable=False, index=True)
    ticket_index: Mapped[int] = mapped_column(Integer, nullable=False)
    total_tickets: Mapped[int] = mapped_column(Integer, nullable=False)
    tier: Mapped[str] = mapped_column(String(120), nullable=False)
    prize_amount: Mapped[int] = mapped_column(BigInteger, nullable=False)

    payout_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="pending", index=True
    )
    payout_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    """Number of transfers started for this winner."""

    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
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

    raffle: Mapped["Raffle"] = relationship(back_populates="winners")
    draw_result: Mapped["DrawResult"] = relationship(back_populates="winners")
    payout_records: Mapped[list["PayoutRecord"]] = relationship(
        back_populates="winner",
        cascade="all, delete-orphan",
        order_by="PayoutRecord.attempt",
    )

    __table_args__ = (
        UniqueConstraint("raffle_id", "ticket_index"),
        UniqueConstraint("raffle_id", "position"),
        CheckConstraint(
            "payout_status IN ('pending','processing','paid','failed')",
            name="payout_status_enum",
        ),
        CheckConstraint("prize_amount >= 0", name="prize_amount_non_negative"),
    )

    def __init__(
        self,
        *,
        position: int,
        wallet_address: str,
        ticket_index: int,
        total_tickets: int,
        tier: str,
        prize_amount: int,
        raffle_id: Optional[int] = None,
        draw_result: Optional["DrawResult"] = None,
    ) -> None:
        if raffle_id is not None:
            self.raffle_id = raffle_id
        if draw_result is not None:
            self.draw_result = draw_result
        self.position = position
        self.wallet_address = wallet_address.lower()
        self.ticket_index = ticket_index
        self.total_tickets = total_tickets
        self.tier = tier
        self.prize_amount = prize_amount
        self.payout_status = "pending"
        self.payout_attempts = 0

    def __repr__(self) -> str:  # pragma: no cover - repr is trivial
        return "<Winner(id={id}, raffle_id={raffle}, position={pos}, wallet={wallet}, status={status})>".format(
            id=self.id,
            raffle=self.raffle_id,
            pos=self.position,
            wallet=self.wallet_address,
            status=self.payout_status,
        )

    @classmethod
    def get_by_id(cls, session: Session, winner_id: int) -> Optional["Winner"]:
        return session.get(cls, winner_id)

    @classmethod
    def list_for_raffle(
        cls, session: Session, raffle_id: int, status: Optional[str] = None
    ) -> list["Winner"]:
        stmt = select(cls).where(cls.raffle_id == raffle_id)
        if status is not None:
            stmt = stmt.where(cls.payout_status == status)
        return list(session.scalars(stmt.order_by(cls.position)))
