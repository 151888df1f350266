from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Integer, String, Text, select
from sqlalchemy.orm import Mapped, Session, mapped_column

from ..db.utils import dt_iso
from .base import ID_TYPE, Base


def _json_default(value: Any) -> str:
    if isinstance(value, datetime):
        return dt_iso(value)
    return str(value)


class AuditLog(Base):
    """Append-only trail of operator and system actions on raffles."""

    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(ID_TYPE, primary_key=True, autoincrement=True)
    actor_type: Mapped[str] = mapped_column(String(20), nullable=False)
    actor: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    action: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    subject_table: Mapped[str] = mapped_column(String(50), nullable=False)
    subject_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    raffle_id: Mapped[Optional[int]] = mapped_column(
        ID_TYPE, ForeignKey("raffles.id", ondelete="SET NULL"), nullable=True, index=True
    )
    details_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    occurred_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        CheckConstraint(
            "actor_type IN ('system','operator','user')", name="actor_type_enum"
        ),
    )

    @property
    def details(self) -> dict[str, Any]:
        return json.loads(self.details_json) if self.details_json else {}

    @classmethod
    def record(
        cls,
        session: Session,
        action: str,
        *,
        subject_table: str,
        subject_id: Optional[int] = None,
        raffle_id: Optional[int] = None,
        actor: Optional[str] = None,
        actor_type: str = "system",
        details: Optional[dict[str, Any]] = None,
        occurred_at: Optional[datetime] = None,
    ) -> "AuditLog":
        """Add an audit row to ``session`` (flushed with the caller's transaction)."""

        row = cls(
            actor_type=actor_type,
            actor=actor,
            action=action,
            subject_table=subject_table,
            subject_id=subject_id,
            raffle_id=raffle_id,
            details_json=json.dumps(details, sort_keys=True, default=_json_default) if details else None,
            occurred_at=occurred_at or datetime.now(timezone.utc),
        )
        session.add(row)
        return row

    @classmethod
    def list_for_raffle(
        cls, session: Session, raffle_id: int, action: Optional[str] = None
    ) -> list["AuditLog"]:
        stmt = select(cls).where(cls.raffle_id == raffle_id)
        if action is not None:
            stmt = stmt.where(cls.action == action)
        return list(session.scalars(stmt.order_by(cls.id)))
