"""Payout attempt records."""

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
    Text,
    UniqueConstraint,
    select,
)
from sqlalchemy.orm import Mapped, Session, mapped_column, relationship

from .base import ID_TYPE, Base

if TYPE_CHECKING:
    from .result import Winner


class PayoutRecord(Base):
    """One transfer attempt for a winner's prize.

    Every attempt gets its own row; a winner has at most one row in a
    non-terminal status at a time.
    """

    __tablename__ = "payout_records"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    winner_id: Mapped[int] = mapped_column(
        ID_TYPE, ForeignKey("raffle_winners.id", ondelete="CASCADE"), nullable=False, index=True
    )
    raffle_id: Mapped[int] = mapped_column(
        ID_TYPE, ForeignKey("raffles.id", ondelete="CASCADE"), nullable=False, index=True
    )
    wallet_address: Mapped[str] = mapped_column(String(42), nullable=False)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)

    attempt: Mapped[int] = mapped_column(Integer, nullable=False)
    """1-based attempt number for the winner."""

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    transaction_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    """Identifier returned by the transfer service on success."""

    failure_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    started_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    winner: Mapped["Winner"] = relationship(back_populates="payout_records")

    __table_args__ = (
        UniqueConstraint("winner_id", "attempt"),
        CheckConstraint(
            "status IN ('pending','processing','paid','failed')", name="status_enum"
        ),
    )

    def __repr__(self) -> str:  # pragma: no cover - repr is trivial
        return "<PayoutRecord(id={id}, winner_id={winner}, attempt={attempt}, status={status})>".format(
            id=self.id,
            winner=self.winner_id,
            attempt=self.attempt,
            status=self.status,
        )

    @classmethod
    def list_for_winner(cls, session: Session, winner_id: int) -> list["PayoutRecord"]:
        return list(
            session.scalars(
                select(cls).where(cls.winner_id == winner_id).order_by(cls.attempt)
            )
        )

    @classmethod
    def latest_for_winner(cls, session: Session, winner_id: int) -> Optional["PayoutRecord"]:
        return session.scalars(
            select(cls).where(cls.winner_id == winner_id).order_by(cls.attempt.desc())
        ).first()
