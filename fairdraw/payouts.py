"""Payout state machine and batch payout processing.

Per winner::

    pending -> processing -> paid | failed
    failed  -> pending            (explicit operator retry only)

A winner is claimed with a compare-and-swap on ``payout_status``
(``pending`` to ``processing``) committed before the transfer is submitted,
so two concurrent triggers can never both execute a transfer for the same
winner. Each attempt gets its own :class:`~fairdraw.models.PayoutRecord`.
"""

from __future__ import annotations

import logging
from collections import Counter
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session, sessionmaker

from .chain.base import TransferExecutor, TransferResult
from .config import get_settings
from .errors import (
    DrawResultNotFoundError,
    InvalidPayoutTransitionError,
    PayoutAlreadyProcessedError,
    PayoutInProgressError,
    PayoutRetryLimitError,
    RaffleError,
    RaffleNotFoundError,
    WinnerNotFoundError,
)
from .models import PAYOUT_STATUSES, AuditLog, DrawResult, PayoutRecord, Raffle, Winner

logger = logging.getLogger(__name__)

PAYOUT_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"processing"}),
    "processing": frozenset({"paid", "failed"}),
    "failed": frozenset({"pending"}),
    "paid": frozenset(),
}


def can_transition_payout(current: str, requested: str) -> bool:
    return requested in PAYOUT_TRANSITIONS.get(current, frozenset())


def ensure_payout_transition(winner_id: int, current: str, requested: str) -> None:
    """Raise the error matching an illegal payout transition."""
    if can_transition_payout(current, requested):
        return
    if current == "paid":
        raise PayoutAlreadyProcessedError(winner_id)
    if current == "processing" and requested == "processing":
        raise PayoutInProgressError(winner_id)
    raise InvalidPayoutTransitionError(current, requested)


@dataclass(frozen=True)
class RetryRequested:
    """Operator request to reopen one failed payout.

    Attributes
    ----------
    winner_id : int
        Winner whose failed payout is retried.
    requested_by : str
        Operator identifier recorded in the audit trail.
    reason : Optional[str]
        Free text justification.
    """

    winner_id: int
    requested_by: str
    reason: Optional[str] = None


@dataclass(frozen=True)
class PayoutOutcome:
    """Result of one winner inside a batch."""

    winner_id: int
    status: str
    record_id: Optional[int] = None
    transaction_id: Optional[str] = None
    error: Optional[str] = None


@dataclass
class BatchResult:
    raffle_id: int
    outcomes: list[PayoutOutcome] = field(default_factory=list)

    def _with_status(self, status: str) -> list[PayoutOutcome]:
        return [o for o in self.outcomes if o.status == status]

    @property
    def paid(self) -> list[PayoutOutcome]:
        return self._with_status("paid")

    @property
    def failed(self) -> list[PayoutOutcome]:
        return self._with_status("failed")

    @property
    def skipped(self) -> list[PayoutOutcome]:
        """Winners rejected by a state check (claimed elsewhere, retry limit, ...)."""
        return self._with_status("skipped")

    @property
    def errors(self) -> list[PayoutOutcome]:
        """Winners whose attempt hit an unexpected error."""
        return self._with_status("error")


@dataclass(frozen=True)
class PayoutSummary:
    raffle_id: int
    winners: int
    counts: dict[str, int]
    total_amount: int
    paid_amount: int

    @property
    def outstanding_amount(self) -> int:
        return self.total_amount - self.paid_amount


@dataclass(frozen=True)
class _Claim:
    winner_id: int
    raffle_id: int
    wallet_address: str
    amount: int
    attempt: int
    record_id: int


class PayoutProcessor:
    """Drives winners through the payout state machine.

    Every state change runs in its own short transaction opened from
    ``session_factory``; the transfer itself runs outside any transaction.

    Parameters
    ----------
    session_factory : sessionmaker
        Factory of sessions bound to the raffle database. Worker threads
        each open their own sessions.
    transfer : Optional[TransferExecutor]
        Capability that submits the token transfer. Its own timeout bounds
        how long an attempt can block. Defaults to a
        :class:`~fairdraw.chain.transfer.TransferClient` built on first use.
    max_workers : Optional[int]
        Concurrency of :meth:`send_all_payouts`; defaults to
        ``PAYOUT_CONCURRENCY``.
    max_attempts : Optional[int]
        Transfer attempts allowed per winner; defaults to
        ``PAYOUT_MAX_ATTEMPTS``.
    clock : Optional[Callable[[], datetime]]
        Returns the current aware UTC time.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        transfer: Optional[TransferExecutor] = None,
        *,
        max_workers: Optional[int] = None,
        max_attempts: Optional[int] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        settings = get_settings()
        self._session_factory = session_factory
        self._transfer = transfer
        self.max_workers = max_workers or settings.payout_concurrency
        self.max_attempts = max_attempts or settings.payout_max_attempts
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @property
    def transfer(self) -> TransferExecutor:
        if self._transfer is None:
            from .chain.transfer import TransferClient

            self._transfer = TransferClient()
        return self._transfer

    # -------- state changes --------
    def _claim(self, winner_id: int) -> _Claim:
        now = self._clock()
        with self._session_factory() as session:
            winner = session.get(Winner, winner_id)
            if winner is None:
                raise WinnerNotFoundError(winner_id)
            if winner.payout_status == "pending" and winner.payout_attempts >= self.max_attempts:
                raise PayoutRetryLimitError(winner_id, winner.payout_attempts)

            claimed = session.execute(
                update(Winner)
                .where(Winner.id == winner_id, Winner.payout_status == "pending")
                .values(
                    payout_status="processing",
                    payout_attempts=Winner.payout_attempts + 1,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if claimed.rowcount != 1:
                session.rollback()
                current = session.scalar(
                    select(Winner.payout_status).where(Winner.id == winner_id)
                )
                ensure_payout_transition(winner_id, current, "processing")
                # Status moved back to pending between the read and the update.
                raise PayoutInProgressError(winner_id)

            session.refresh(winner)
            record = PayoutRecord(
                winner_id=winner.id,
                raffle_id=winner.raffle_id,
                wallet_address=winner.wallet_address,
                amount=winner.prize_amount,
                attempt=winner.payout_attempts,
                status="processing",
                created_at=now,
                started_at=now,
            )
            session.add(record)
            session.commit()
            return _Claim(
                winner_id=winner.id,
                raffle_id=winner.raffle_id,
                wallet_address=winner.wallet_address,
                amount=winner.prize_amount,
                attempt=record.attempt,
                record_id=record.id,
            )

    def _settle(
        self,
        claim: _Claim,
        *,
        transaction_id: Optional[str] = None,
        failure_reason: Optional[str] = None,
    ) -> PayoutRecord:
        now = self._clock()
        target = "paid" if failure_reason is None else "failed"
        with self._session_factory() as session:
            winner = session.get(Winner, claim.winner_id)
            record = session.get(PayoutRecord, claim.record_id)
            if winner is None or record is None:
                raise WinnerNotFoundError(claim.winner_id)

            record.status = target
            record.transaction_id = transaction_id
            record.failure_reason = failure_reason
            record.completed_at = now

            if winner.payout_status != "processing":
                # An operator resolved this attempt as stuck while the transfer ran.
                session.commit()
                logger.error(
                    f"Payout for winner {winner.id} finished as {target} after being "
                    f"moved to {winner.payout_status}; reconcile transaction {transaction_id}"
                )
                raise InvalidPayoutTransitionError(winner.payout_status, target)

            winner.payout_status = target
            if target == "paid":
                winner.paid_at = now
            AuditLog.record(
                session,
                "PAYOUT_SENT" if target == "paid" else "PAYOUT_FAILED",
                subject_table="raffle_winners",
                subject_id=winner.id,
                raffle_id=winner.raffle_id,
                details={
                    "attempt": claim.attempt,
                    "amount": claim.amount,
                    "wallet": claim.wallet_address,
                    "transaction_id": transaction_id,
                    "reason": failure_reason,
                },
                occurred_at=now,
            )
            session.commit()
            session.refresh(record)
            return record

    # -------- public API --------
    def send_payout(self, winner_id: int) -> PayoutRecord:
        """Pay one winner.

        Parameters
        ----------
        winner_id : int
            Winner to pay. Must be in ``pending`` status.

        Returns
        -------
        PayoutRecord
            The attempt record in terminal status: ``paid`` with the
            transaction id, or ``failed`` with the reason.

        Raises
        ------
        WinnerNotFoundError
            If the winner does not exist.
        PayoutAlreadyProcessedError
            If the winner was already paid. No transfer is issued.
        PayoutInProgressError
            If another attempt currently holds the winner.
        InvalidPayoutTransitionError
            If the winner is ``failed``; use :meth:`retry` instead.
        PayoutRetryLimitError
            If the winner has used all allowed attempts.
        """
        claim = self._claim(winner_id)
        reference = f"raffle-{claim.raffle_id}-winner-{claim.winner_id}-attempt-{claim.attempt}"
        try:
            result: TransferResult = self.transfer.send(
                claim.wallet_address, claim.amount, reference=reference
            )
        except Exception as exc:
            reason = str(exc) or type(exc).__name__
            logger.warning(f"Payout to winner {winner_id} failed: {reason}")
            return self._settle(claim, failure_reason=reason)

        if not result.success:
            reason = result.error or "transfer was not successful"
            logger.warning(f"Payout to winner {winner_id} failed: {reason}")
            return self._settle(claim, failure_reason=reason)
        if not result.transaction_id:
            reason = "transfer reported success without a transaction id"
            logger.warning(f"Payout to winner {winner_id} failed: {reason}")
            return self._settle(claim, failure_reason=reason)

        record = self._settle(claim, transaction_id=result.transaction_id)
        logger.info(
            f"Paid winner {winner_id} {claim.amount} in transaction {result.transaction_id}"
        )
        return record

    def _send_isolated(self, winner_id: int) -> PayoutOutcome:
        try:
            record = self.send_payout(winner_id)
        except RaffleError as exc:
            return PayoutOutcome(winner_id=winner_id, status="skipped", error=str(exc))
        except Exception as exc:
            logger.exception(f"Unexpected error paying winner {winner_id}")
            return PayoutOutcome(winner_id=winner_id, status="error", error=str(exc))
        return PayoutOutcome(
            winner_id=winner_id,
            status=record.status,
            record_id=record.id,
            transaction_id=record.transaction_id,
            error=record.failure_reason,
        )

    def send_all_payouts(self, raffle_id: int) -> BatchResult:
        """Pay every ``pending`` winner of a drawn raffle with bounded concurrency.

        Each winner is attempted independently: a failure is recorded on
        that winner and never aborts or rolls back the others.

        Raises
        ------
        RaffleNotFoundError
            If the raffle does not exist.
        DrawResultNotFoundError
            If the raffle has not been drawn.
        """
        with self._session_factory() as session:
            if session.get(Raffle, raffle_id) is None:
                raise RaffleNotFoundError(raffle_id)
            if DrawResult.get_by_raffle_id(session, raffle_id) is None:
                raise DrawResultNotFoundError(raffle_id)
            winner_ids = [
                w.id for w in Winner.list_for_raffle(session, raffle_id, status="pending")
            ]

        batch = BatchResult(raffle_id=raffle_id)
        if not winner_ids:
            logger.info(f"Raffle {raffle_id} has no pending payouts")
            return batch

        # Build the client once before fanning out.
        self.transfer
        workers = max(1, min(self.max_workers, len(winner_ids)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="payout") as pool:
            futures = [pool.submit(self._send_isolated, wid) for wid in winner_ids]
            for future in as_completed(futures):
                batch.outcomes.append(future.result())
        batch.outcomes.sort(key=lambda o: o.winner_id)

        logger.info(
            f"Raffle {raffle_id} payout batch: {len(batch.paid)} paid, "
            f"{len(batch.failed)} failed, {len(batch.skipped)} skipped, "
            f"{len(batch.errors)} errors"
        )
        return batch

    def request_retry(self, request: RetryRequested) -> Winner:
        """Reopen a ``failed`` payout (``failed -> pending``) and audit the request.

        Raises
        ------
        WinnerNotFoundError
            If the winner does not exist.
        PayoutAlreadyProcessedError
            If the winner was already paid.
        InvalidPayoutTransitionError
            If the winner is not ``failed``.
        PayoutRetryLimitError
            If no attempts remain.
        """
        now = self._clock()
        with self._session_factory() as session:
            winner = session.get(Winner, request.winner_id)
            if winner is None:
                raise WinnerNotFoundError(request.winner_id)
            ensure_payout_transition(winner.id, winner.payout_status, "pending")
            if winner.payout_attempts >= self.max_attempts:
                raise PayoutRetryLimitError(winner.id, winner.payout_attempts)

            reopened = session.execute(
                update(Winner)
                .where(Winner.id == winner.id, Winner.payout_status == "failed")
                .values(payout_status="pending", updated_at=now)
                .execution_options(synchronize_session=False)
            )
            if reopened.rowcount != 1:
                session.rollback()
                current = session.scalar(
                    select(Winner.payout_status).where(Winner.id == winner.id)
                )
                raise InvalidPayoutTransitionError(current, "pending")

            AuditLog.record(
                session,
                "PAYOUT_RETRY_REQUESTED",
                subject_table="raffle_winners",
                subject_id=winner.id,
                raffle_id=winner.raffle_id,
                actor=request.requested_by,
                actor_type="operator",
                details={"reason": request.reason, "attempts": winner.payout_attempts},
                occurred_at=now,
            )
            session.commit()
            session.refresh(winner)
            logger.info(
                f"Retry of payout for winner {winner.id} requested by {request.requested_by}"
            )
            return winner

    def retry(self, request: RetryRequested) -> PayoutRecord:
        """Reopen a failed payout and immediately attempt it again."""
        self.request_retry(request)
        return self.send_payout(request.winner_id)

    def resolve_stuck_payout(
        self, winner_id: int, resolved_by: str, reason: str
    ) -> Winner:
        """Mark a ``processing`` payout as ``failed`` after manual reconciliation.

        Only for attempts whose worker died mid-transfer; the operator must
        first confirm on-chain that no transfer went out. The winner then
        follows the normal retry path.
        """
        now = self._clock()
        with self._session_factory() as session:
            winner = session.get(Winner, winner_id)
            if winner is None:
                raise WinnerNotFoundError(winner_id)
            ensure_payout_transition(winner.id, winner.payout_status, "failed")

            moved = session.execute(
                update(Winner)
                .where(Winner.id == winner_id, Winner.payout_status == "processing")
                .values(payout_status="failed", updated_at=now)
                .execution_options(synchronize_session=False)
            )
            if moved.rowcount != 1:
                session.rollback()
                current = session.scalar(
                    select(Winner.payout_status).where(Winner.id == winner_id)
                )
                raise InvalidPayoutTransitionError(current, "failed")

            record = PayoutRecord.latest_for_winner(session, winner_id)
            if record is not None and record.status == "processing":
                record.status = "failed"
                record.failure_reason = f"Resolved as stuck by {resolved_by}: {reason}"
                record.completed_at = now
            AuditLog.record(
                session,
                "PAYOUT_STUCK_RESOLVED",
                subject_table="raffle_winners",
                subject_id=winner_id,
                raffle_id=winner.raffle_id,
                actor=resolved_by,
                actor_type="operator",
                details={"reason": reason},
                occurred_at=now,
            )
            session.commit()
            session.refresh(winner)
            logger.warning(f"Stuck payout for winner {winner_id} resolved by {resolved_by}: {reason}")
            return winner


def get_payout_summary(session: Session, raffle_id: int) -> PayoutSummary:
    """Return payout counts per status and amounts for a raffle.

    Raises
    ------
    RaffleNotFoundError
        If the raffle does not exist.
    """
    if session.get(Raffle, raffle_id) is None:
        raise RaffleNotFoundError(raffle_id)
    rows = session.execute(
        select(Winner.payout_status, func.count(Winner.id), func.coalesce(func.sum(Winner.prize_amount), 0))
        .where(Winner.raffle_id == raffle_id)
        .group_by(Winner.payout_status)
    ).all()
    counts: Counter[str] = Counter({status: 0 for status in PAYOUT_STATUSES})
    amounts: Counter[str] = Counter()
    for status, count, amount in rows:
        counts[status] = int(count)
        amounts[status] = int(amount)
    return PayoutSummary(
        raffle_id=raffle_id,
        winners=sum(counts.values()),
        counts=dict(counts),
        total_amount=sum(amounts.values()),
        paid_amount=amounts["paid"],
    )
