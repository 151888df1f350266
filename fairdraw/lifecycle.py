"""Raffle status machine and the gates derived from it.

::

    scheduled -> active | cancelled
    active    -> paused | ending | cancelled
    paused    -> active | ending | cancelled
    ending    -> drawing | cancelled
    drawing   -> completed | cancelled

``completed`` and ``cancelled`` are terminal.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from .db.utils import as_utc
from .errors import (
    InvalidStatusTransitionError,
    RaffleNotActiveError,
    RaffleNotDrawableError,
)
from .models import AuditLog, Raffle

logger = logging.getLogger(__name__)

RAFFLE_TRANSITIONS: dict[str, frozenset[str]] = {
    "scheduled": frozenset({"active", "cancelled"}),
    "active": frozenset({"paused", "ending", "cancelled"}),
    "paused": frozenset({"active", "ending", "cancelled"}),
    "ending": frozenset({"drawing", "cancelled"}),
    "drawing": frozenset({"completed", "cancelled"}),
    "completed": frozenset(),
    "cancelled": frozenset(),
}

DRAWABLE_STATUSES = frozenset({"active", "ending"})


def can_transition(current: str, requested: str) -> bool:
    return requested in RAFFLE_TRANSITIONS.get(current, frozenset())


def transition(
    raffle: Raffle,
    requested: str,
    *,
    session: Optional[Session] = None,
    actor: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Raffle:
    """Move ``raffle`` to ``requested`` if the transition is legal.

    Parameters
    ----------
    raffle : Raffle
        Raffle to update in place.
    requested : str
        Target status.
    session : Optional[Session]
        When given, an audit row is added to it.
    actor : Optional[str]
        Operator identifier recorded in the audit row; ``None`` means the
        system acted.
    now : Optional[datetime]
        Timestamp used for ``completed_at`` / ``cancelled_at``.

    Raises
    ------
    InvalidStatusTransitionError
        If ``requested`` is not reachable from the current status.
    """
    current = raffle.status
    if not can_transition(current, requested):
        raise InvalidStatusTransitionError(current, requested)

    now = now or datetime.now(timezone.utc)
    raffle.status = requested
    if requested == "completed":
        raffle.completed_at = now
    elif requested == "cancelled":
        raffle.cancelled_at = now

    logger.info(f"Raffle {raffle.id} status {current} -> {requested}")
    if session is not None:
        AuditLog.record(
            session,
            "RAFFLE_STATUS_CHANGED",
            subject_table="raffles",
            subject_id=raffle.id,
            raffle_id=raffle.id,
            actor=actor,
            actor_type="operator" if actor else "system",
            details={"from": current, "to": requested},
            occurred_at=now,
        )
    return raffle


def ensure_accepting_entries(raffle: Raffle, now: datetime) -> None:
    """Raise unless the raffle is ``active`` and ``now`` is inside its window.

    Raises
    ------
    RaffleNotActiveError
        With the specific reason the entry is refused.
    """
    if raffle.status != "active":
        raise RaffleNotActiveError(raffle.id, f"status is {raffle.status}")
    if now < as_utc(raffle.start_time):
        raise RaffleNotActiveError(raffle.id, "raffle has not started")
    if now >= as_utc(raffle.end_time):
        raise RaffleNotActiveError(raffle.id, "raffle has ended")


def drawability_issue(
    raffle: Raffle,
    now: datetime,
    pool_size: Optional[int] = None,
    has_result: bool = False,
) -> Optional[str]:
    """Return why ``raffle`` cannot be drawn, or ``None`` when it can.

    ``pool_size`` defaults to the raffle's ``total_entries`` counter.
    """
    if has_result or raffle.status == "completed":
        return "already drawn"
    if raffle.status == "cancelled":
        return "cancelled"
    if raffle.status not in DRAWABLE_STATUSES:
        return f"status is {raffle.status}"
    if now < as_utc(raffle.end_time):
        return "not ended"
    size = raffle.total_entries if pool_size is None else pool_size
    if size < 1:
        return "no entries"
    return None


def ensure_drawable(
    raffle: Raffle,
    now: datetime,
    pool_size: Optional[int] = None,
    has_result: bool = False,
) -> None:
    """Raise :class:`RaffleNotDrawableError` if :func:`drawability_issue` finds one."""
    reason = drawability_issue(raffle, now, pool_size=pool_size, has_result=has_result)
    if reason is not None:
        raise RaffleNotDrawableError(reason)
