"""Entry model: one verified purchase of raffle units."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    func,
    select,
)
from sqlalchemy.orm import Mapped, Session, mapped_column, relationship

from .base import ID_TYPE, Base

if TYPE_CHECKING:
    from .raffle import Raffle


class Entry(Base):
    """Purchase of ``units`` tickets by ``wallet_address``.

    Immutable after creation except for the refund flag set on cancellation.
    """

    __tablename__ = "raffle_entries"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    """Primary key. Ascending ids define ticket pool order."""

    raffle_id: Mapped[int] = mapped_column(
        ID_TYPE, ForeignKey("raffles.id", ondelete="CASCADE"), nullable=False, index=True
    )
    wallet_address: Mapped[str] = mapped_column(String(42), nullable=False, index=True)
    """Lower-cased ``0x`` address of the buyer."""

    units: Mapped[int] = mapped_column(Integer, nullable=False)
    amount_paid: Mapped[int] = mapped_column(BigInteger, nullable=False)

    transaction_hash: Mapped[str] = mapped_column(String(66), nullable=False)
    """Lower-cased hash of the inbound token transfer; never reused."""

    block_number: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    refunded: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    refunded_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    raffle: Mapped["Raffle"] = relationship(back_populates="entries")

    __table_args__ = (
        UniqueConstraint("transaction_hash"),
        CheckConstraint("units >= 1", name="units_positive"),
        CheckConstraint("amount_paid >= 0", name="amount_non_negative"),
    )

    def __init__(
        self,
        *,
        wallet_address: str,
        units: int,
        amount_paid: int,
        transaction_hash: str,
        raffle: Optional["Raffle"] = None,
        raffle_id: Optional[int] = None,
        block_number: Optional[int] = None,
        created_at: Optional[datetime] = None,
    ) -> None:
        if raffle is not None:
            self.raffle = raffle
        if raffle_id is not None:
            self.raffle_id = raffle_id
        self.wallet_address = wallet_address.lower()
        self.units = units
        self.amount_paid = amount_paid
        self.transaction_hash = transaction_hash.lower()
        self.block_number = block_number
        self.refunded = False
        if created_at is not None:
            self.created_at = created_at

    def __repr__(self) -> str:  # pragma: no cover - repr is trivial
        return "<Entry(id={id}, raffle_id={raffle}, wallet={wallet}, units={units})>".format(
            id=self.id,
            raffle=self.raffle_id,
            wallet=self.wallet_address,
            units=self.units,
        )

    @classmethod
    def get_by_transaction_hash(cls, session: Session, tx_hash: str) -> Optional["Entry"]:
        return session.scalar(select(cls).where(cls.transaction_hash == tx_hash.lower()))

    @classmethod
    def list_for_raffle(
        cls, session: Session, raffle_id: int, include_refunded: bool = False
    ) -> list["Entry"]:
        """Return the raffle's entries in creation order."""

        stmt = select(cls).where(cls.raffle_id == raffle_id)
        if not include_refunded:
            stmt = stmt.where(cls.refunded.is_(False))
        return list(session.scalars(stmt.order_by(cls.id)))

    @classmethod
    def units_for_wallet(cls, session: Session, raffle_id: int, wallet_address: str) -> int:
        """Return the non-refunded units ``wallet_address`` holds in the raffle."""

        total = session.scalar(
            select(func.coalesce(func.sum(cls.units), 0)).where(
                cls.raffle_id == raffle_id,
                cls.wallet_address == wallet_address.lower(),
                cls.refunded.is_(False),
            )
        )
        return int(total or 0)
