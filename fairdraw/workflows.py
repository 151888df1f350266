"""Operations exposed to the web and admin layers.

Functions taking a ``session`` add to the caller's transaction and leave
commit/rollback to the caller, except :func:`initiate_draw`, which commits
its own phases. Payout functions take a ``session_factory`` because every
payout state change commits independently.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Callable, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from .config import Settings, get_settings
from .draw.engine import DrawEngine
from .errors import DuplicateTransactionError, InvalidStatusTransitionError, RaffleNotFoundError
from .lifecycle import ensure_accepting_entries, transition
from .models import AuditLog, DrawResult, Entry, PayoutRecord, Raffle, Winner
from .payouts import (
    BatchResult,
    PayoutProcessor,
    PayoutSummary,
    RetryRequested,
    get_payout_summary as _get_payout_summary,
)
from .validation import (
    RaffleConfig,
    ensure_within_cap,
    normalize_tx_hash,
    normalize_wallet,
    validate_entry_purchase,
    validate_raffle_config,
)
from .verification import TransferVerifier, verify_draw as _verify_draw

if TYPE_CHECKING:
    from .chain.base import ChainReader, TransferExecutor
    from .draw.randomness import RandomnessSource

logger = logging.getLogger(__name__)

# Entered only by the draw engine.
ENGINE_OWNED_STATUSES = frozenset({"drawing", "completed"})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _get_raffle(session: Session, raffle_id: int, lock: bool = False) -> Raffle:
    raffle = (
        Raffle.get_for_update(session, raffle_id) if lock else Raffle.get_by_id(session, raffle_id)
    )
    if raffle is None:
        raise RaffleNotFoundError(raffle_id)
    return raffle


# ---------------------------------------------------------------------------
# Raffles
# ---------------------------------------------------------------------------


def create_raffle(
    session: Session,
    config: RaffleConfig,
    actor: Optional[str] = None,
    settings: Optional[Settings] = None,
) -> Raffle:
    """Validate ``config`` and persist a new ``scheduled`` raffle.

    Parameters
    ----------
    session : Session
        Active SQLAlchemy session.
    config : RaffleConfig
        Operator supplied parameters.
    actor : Optional[str]
        Operator identifier recorded in the audit trail.
    settings : Optional[Settings]
        Source of the default platform fee and seed mode.

    Returns
    -------
    Raffle
        The flushed raffle with its ``id`` populated.

    Raises
    ------
    InvalidRaffleConfigError
        If any parameter or the prize tier table is invalid.
    """
    settings = settings or get_settings()
    tiers = validate_raffle_config(config)

    raffle = Raffle(
        raffle_type=config.raffle_type,
        title=config.title.strip(),
        description=config.description,
        entry_price=config.entry_price,
        max_entries_per_user=config.max_entries_per_user,
        start_time=config.start_time,
        end_time=config.end_time,
        winner_count=config.winner_count,
        prize_tiers=[t.as_dict() for t in tiers] if tiers is not None else None,
        platform_fee_bps=(
            config.platform_fee_bps
            if config.platform_fee_bps is not None
            else settings.platform_fee_bps
        ),
        seed_mode=config.seed_mode or settings.default_seed_mode,
        allow_multiple_wins=config.allow_multiple_wins,
    )
    session.add(raffle)
    session.flush()

    AuditLog.record(
        session,
        "RAFFLE_CREATED",
        subject_table="raffles",
        subject_id=raffle.id,
        raffle_id=raffle.id,
        actor=actor,
        actor_type="operator" if actor else "system",
        details={
            "title": raffle.title,
            "raffle_type": raffle.raffle_type,
            "entry_price": raffle.entry_price,
            "winner_count": raffle.winner_count,
            "seed_mode": raffle.seed_mode,
        },
    )
    logger.info(
        f"Created {raffle.raffle_type} raffle {raffle.id} '{raffle.title}' "
        f"({raffle.winner_count} winners, {raffle.seed_mode} seed)"
    )
    return raffle


def transition_raffle(
    session: Session,
    raffle_id: int,
    status: str,
    actor: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Raffle:
    """Apply an operator status change (activate, pause, resume, close).

    ``drawing`` and ``completed`` are reached only through
    :func:`initiate_draw`; cancellation goes through :func:`cancel_raffle`
    so entries are flagged for refund.

    Raises
    ------
    RaffleNotFoundError
        If the raffle does not exist.
    InvalidStatusTransitionError
        If the transition is not allowed.
    """
    raffle = _get_raffle(session, raffle_id, lock=True)
    if status == "cancelled":
        return cancel_raffle(session, raffle_id, actor=actor, now=now)
    if status in ENGINE_OWNED_STATUSES:
        raise InvalidStatusTransitionError(raffle.status, status)
    transition(raffle, status, session=session, actor=actor, now=now or _utcnow())
    session.flush()
    return raffle


def cancel_raffle(
    session: Session,
    raffle_id: int,
    actor: Optional[str] = None,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Raffle:
    """Cancel a raffle and flag all of its entries as refunded.

    Refund transfers themselves are executed outside the engine; refunded
    entries never enter a ticket pool.

    Raises
    ------
    RaffleNotFoundError
        If the raffle does not exist.
    InvalidStatusTransitionError
        If the raffle is already ``completed`` or ``cancelled``.
    """
    now = now or _utcnow()
    raffle = _get_raffle(session, raffle_id, lock=True)
    transition(raffle, "cancelled", session=session, actor=actor, now=now)

    refunded = 0
    for entry in Entry.list_for_raffle(session, raffle.id):
        entry.refunded = True
        entry.refunded_at = now
        refunded += 1

    AuditLog.record(
        session,
        "RAFFLE_CANCELLED",
        subject_table="raffles",
        subject_id=raffle.id,
        raffle_id=raffle.id,
        actor=actor,
        actor_type="operator" if actor else "system",
        details={"reason": reason, "refunded_entries": refunded},
        occurred_at=now,
    )
    session.flush()
    logger.info(f"Cancelled raffle {raffle.id}; {refunded} entries flagged for refund")
    return raffle


# ---------------------------------------------------------------------------
# Entries
# ---------------------------------------------------------------------------


def create_entry(
    session: Session,
    raffle_id: int,
    wallet_address: str,
    units: int,
    amount_paid: int,
    transfer_tx_hash: str,
    verifier: Optional[TransferVerifier] = None,
    now: Optional[datetime] = None,
) -> Entry:
    """Record a purchase of ``units`` tickets after verifying its payment.

    The raffle row is locked for the duration of the caller's transaction so
    entry accounting and the draw's move to ``drawing`` are serialized.

    Parameters
    ----------
    session : Session
        Active SQLAlchemy session.
    raffle_id : int
        Raffle being entered.
    wallet_address : str
        Buyer wallet; must be the sender of the payment.
    units : int
        Number of tickets bought (1 to 10 000).
    amount_paid : int
        Payment in minor units; must equal ``entry_price * units``.
    transfer_tx_hash : str
        Hash of the inbound settlement-token transfer.
    verifier : Optional[TransferVerifier]
        Inbound transfer verifier. When omitted one is built from settings
        around a :class:`~fairdraw.chain.api.ChainClient`.
    now : Optional[datetime]
        Current time used for the entry window check.

    Returns
    -------
    Entry
        The flushed entry. The hash stays claimed in ``verifier`` until the
        claim TTL expires; a caller that rolls back afterwards and shares the
        verifier should call ``verifier.release(transfer_tx_hash)``.

    Raises
    ------
    ValidationError
        If an input is malformed or the payment does not match the price.
    RaffleNotActiveError
        If the raffle is not accepting entries.
    MaxEntriesExceededError
        If the wallet would exceed the per-user cap.
    DuplicateTransactionError
        If the transaction hash was already used.
    InvalidTransactionError
        If the transfer fails on-chain verification.
    """
    now = now or _utcnow()
    wallet = normalize_wallet(wallet_address)
    tx_hash = normalize_tx_hash(transfer_tx_hash)

    raffle = _get_raffle(session, raffle_id, lock=True)
    ensure_accepting_entries(raffle, now)
    validate_entry_purchase(raffle, units, amount_paid)
    held = Entry.units_for_wallet(session, raffle.id, wallet)
    ensure_within_cap(raffle, held, units)

    if verifier is None:
        from .chain.api import ChainClient

        verifier = TransferVerifier(ChainClient())
    verified = verifier.verify(session, tx_hash, wallet, amount_paid)

    try:
        entry = Entry(
            raffle_id=raffle.id,
            wallet_address=wallet,
            units=units,
            amount_paid=amount_paid,
            transaction_hash=tx_hash,
            block_number=verified.block_number,
            created_at=now,
        )
        session.add(entry)
        try:
            session.flush()
        except IntegrityError as exc:
            raise DuplicateTransactionError(tx_hash) from exc

        raffle.total_entries += units
        raffle.prize_pool += amount_paid
        if held == 0:
            raffle.total_participants += 1
        session.flush()
    except Exception:
        # No flushed entry, so the hash must not stay claimed.
        verifier.release(tx_hash)
        raise
    logger.info(f"Raffle {raffle.id}: {wallet} bought {units} units in {tx_hash}")
    return entry


# ---------------------------------------------------------------------------
# Draw
# ---------------------------------------------------------------------------


def initiate_draw(
    session: Session,
    raffle_id: int,
    randomness: Optional["RandomnessSource"] = None,
    chain: Optional["ChainReader"] = None,
    actor: Optional[str] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> DrawResult:
    """Draw the winners of an ended raffle; see :meth:`DrawEngine.initiate_draw`.

    ``session`` must not be inside a ``Session.begin()`` block because the
    draw commits its phases itself.
    """
    engine = DrawEngine(session, randomness=randomness, chain=chain, clock=clock)
    return engine.initiate_draw(raffle_id, actor=actor)


def draw_readiness(
    session: Session, raffle_id: int, now: Optional[datetime] = None
) -> tuple[bool, Optional[str]]:
    """Return ``(ready, reason)`` without side effects."""
    at = now or _utcnow()
    return DrawEngine(session, clock=lambda: at).readiness(raffle_id)


def verify_draw(session: Session, raffle_id: int) -> bool:
    """Recompute the stored draw of ``raffle_id`` and compare winners."""
    return _verify_draw(session, raffle_id)


# ---------------------------------------------------------------------------
# Payouts
# ---------------------------------------------------------------------------


def send_payout(
    session_factory: sessionmaker,
    winner_id: int,
    transfer: Optional["TransferExecutor"] = None,
) -> PayoutRecord:
    """Pay one pending winner; see :meth:`PayoutProcessor.send_payout`."""
    return PayoutProcessor(session_factory, transfer).send_payout(winner_id)


def send_all_payouts(
    session_factory: sessionmaker,
    raffle_id: int,
    transfer: Optional["TransferExecutor"] = None,
    max_workers: Optional[int] = None,
) -> BatchResult:
    """Pay every pending winner of ``raffle_id`` with bounded concurrency."""
    processor = PayoutProcessor(session_factory, transfer, max_workers=max_workers)
    return processor.send_all_payouts(raffle_id)


def request_payout_retry(
    session_factory: sessionmaker,
    winner_id: int,
    requested_by: str,
    reason: Optional[str] = None,
) -> Winner:
    """Reopen a failed payout without sending it yet."""
    request = RetryRequested(winner_id=winner_id, requested_by=requested_by, reason=reason)
    return PayoutProcessor(session_factory).request_retry(request)


def retry_payout(
    session_factory: sessionmaker,
    winner_id: int,
    requested_by: str,
    reason: Optional[str] = None,
    transfer: Optional["TransferExecutor"] = None,
) -> PayoutRecord:
    """Reopen a failed payout and send it again."""
    request = RetryRequested(winner_id=winner_id, requested_by=requested_by, reason=reason)
    return PayoutProcessor(session_factory, transfer).retry(request)


def resolve_stuck_payout(
    session_factory: sessionmaker, winner_id: int, resolved_by: str, reason: str
) -> Winner:
    """Move a crashed ``processing`` payout to ``failed`` after reconciliation."""
    return PayoutProcessor(session_factory).resolve_stuck_payout(winner_id, resolved_by, reason)


def get_payout_summary(session: Session, raffle_id: int) -> PayoutSummary:
    """Return payout counts per status and the total/paid amounts."""
    return _get_payout_summary(session, raffle_id)
