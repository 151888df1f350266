"""Draw orchestration: reserve a seed, select winners, persist the result."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Callable, Optional, Sequence

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..config import get_settings
from ..errors import (
    InsufficientTicketsError,
    RaffleNotDrawableError,
    RaffleNotFoundError,
)
from ..lifecycle import drawability_issue, ensure_drawable, transition
from ..models import AuditLog, DrawResult, Entry, Raffle, Winner
from .pool import TicketPool
from .randomness import RandomnessSource, Seed, randomness_for_mode
from .selector import SelectedWinner, select_winners
from .tiers import distribute, parse_tiers

if TYPE_CHECKING:
    from ..chain.base import ChainReader

logger = logging.getLogger(__name__)


def compute_winners(
    raffle: Raffle,
    entries: Sequence[Entry],
    seed: str,
    prize_pool: Optional[int] = None,
) -> tuple[TicketPool, list[SelectedWinner]]:
    """Run the selection pipeline for ``raffle`` without touching the database.

    ``prize_pool`` defaults to the raffle's current net prize pool.
    """
    pool = TicketPool.from_entries(entries)
    winners = select_winners(
        pool,
        raffle.winner_count,
        raffle.net_prize_pool if prize_pool is None else prize_pool,
        seed,
        parse_tiers(raffle.prize_tiers),
        one_win_per_wallet=not raffle.allow_multiple_wins,
    )
    return pool, winners


class DrawEngine:
    """Runs a raffle draw in two committed phases.

    Phase 1 validates the raffle, reserves a seed and moves the raffle to
    ``drawing``. Phase 2 selects winners from the reserved seed and writes
    the :class:`~fairdraw.models.DrawResult` together with its winners. A
    crash between the phases leaves a ``drawing`` raffle with a stored seed;
    calling :meth:`initiate_draw` again resumes phase 2 with that same seed.

    The engine commits on its own, so ``session`` must not be inside a
    ``Session.begin()`` block.
    """

    def __init__(
        self,
        session: Session,
        *,
        randomness: Optional[RandomnessSource] = None,
        chain: Optional["ChainReader"] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        """Create a draw engine bound to a SQLAlchemy session.

        Parameters
        ----------
        session : Session
            Session used for lookups, locking and persistence.
        randomness : Optional[RandomnessSource]
            Seed source used for every raffle. When omitted the source is
            chosen from each raffle's ``seed_mode``.
        chain : Optional[ChainReader]
            Chain reader handed to the ``block_hash`` source.
        clock : Optional[Callable[[], datetime]]
            Returns the current aware UTC time.
        """
        self._session = session
        self._randomness = randomness
        self._chain = chain
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    # -------- helpers --------
    def _load_raffle(self, raffle_id: int, lock: bool = False) -> Raffle:
        raffle = (
            Raffle.get_for_update(self._session, raffle_id)
            if lock
            else Raffle.get_by_id(self._session, raffle_id)
        )
        if raffle is None:
            raise RaffleNotFoundError(raffle_id)
        return raffle

    def _source_for(self, raffle: Raffle) -> RandomnessSource:
        if self._randomness is not None:
            return self._randomness
        return randomness_for_mode(raffle.seed_mode, self._chain)

    @staticmethod
    def _precheck(raffle: Raffle, pool: TicketPool) -> None:
        """Fail before any state change if selection can never succeed."""
        if raffle.winner_count > len(pool):
            raise InsufficientTicketsError(raffle.winner_count, len(pool))
        if not raffle.allow_multiple_wins:
            wallets = pool.distinct_wallets()
            if raffle.winner_count > wallets:
                raise InsufficientTicketsError(raffle.winner_count, wallets, "distinct wallets")
        distribute(raffle.net_prize_pool, raffle.winner_count, parse_tiers(raffle.prize_tiers))

    # -------- public API --------
    def readiness(self, raffle_id: int) -> tuple[bool, Optional[str]]:
        """Return ``(ready, reason)`` for drawing ``raffle_id`` now, without side effects."""
        raffle = self._load_raffle(raffle_id)
        has_result = DrawResult.get_by_raffle_id(self._session, raffle_id) is not None
        pool_size = sum(e.units for e in Entry.list_for_raffle(self._session, raffle_id))
        reason = drawability_issue(raffle, self._clock(), pool_size=pool_size, has_result=has_result)
        return reason is None, reason

    def initiate_draw(self, raffle_id: int, actor: Optional[str] = None) -> DrawResult:
        """Draw winners for ``raffle_id`` and persist the result.

        Parameters
        ----------
        raffle_id : int
            Raffle to draw.
        actor : Optional[str]
            Operator triggering the draw, recorded in the audit trail.

        Returns
        -------
        DrawResult
            The committed draw result; ``result.winners`` holds the winners
            ordered by position.

        Raises
        ------
        RaffleNotFoundError
            If the raffle does not exist.
        RaffleNotDrawableError
            If the raffle is not ended, already drawn, cancelled, has no
            entries or is in a status that cannot be drawn.
        InsufficientTicketsError
            If the winner count exceeds the tickets (or distinct wallets).
        RandomnessUnavailableError
            If no seed can be obtained. The raffle is left unchanged.
        """
        try:
            raffle, seed = self._reserve_seed(raffle_id, actor)
            return self._complete(raffle, seed, actor)
        except Exception:
            self._session.rollback()
            raise

    def _reserve_seed(self, raffle_id: int, actor: Optional[str]) -> tuple[Raffle, Seed]:
        now = self._clock()
        raffle = self._load_raffle(raffle_id, lock=True)
        if DrawResult.get_by_raffle_id(self._session, raffle_id) is not None:
            raise RaffleNotDrawableError("already drawn")

        if raffle.status == "drawing" and raffle.draw_seed is not None:
            logger.info(f"Resuming draw of raffle {raffle.id} with reserved seed")
            return raffle, Seed(
                value=raffle.draw_seed,
                mode=raffle.seed_mode,
                block_number=raffle.draw_block_number,
                block_hash=raffle.draw_block_hash,
            )

        entries = Entry.list_for_raffle(self._session, raffle.id)
        if raffle.status != "drawing":
            ensure_drawable(raffle, now, pool_size=sum(e.units for e in entries))
        pool = TicketPool.from_entries(entries)
        self._precheck(raffle, pool)

        seed = self._source_for(raffle).get_seed()

        if raffle.status == "active":
            transition(raffle, "ending", session=self._session, actor=actor, now=now)
        if raffle.status == "ending":
            transition(raffle, "drawing", session=self._session, actor=actor, now=now)
        raffle.draw_seed = seed.value
        raffle.draw_block_number = seed.block_number
        raffle.draw_block_hash = seed.block_hash
        raffle.draw_started_at = now
        details = {
            "seed": seed.value,
            "seed_mode": seed.mode,
            "block_number": seed.block_number,
            "total_tickets": len(pool),
        }
        if seed.block_number is not None:
            details["chain_id"] = get_settings().chain_id
        AuditLog.record(
            self._session,
            "DRAW_SEED_RESERVED",
            subject_table="raffles",
            subject_id=raffle.id,
            raffle_id=raffle.id,
            actor=actor,
            actor_type="operator" if actor else "system",
            details=details,
            occurred_at=now,
        )
        self._session.commit()
        logger.info(
            f"Raffle {raffle.id} reserved {seed.mode} seed"
            + (f" from block {seed.block_number}" if seed.block_number is not None else "")
        )
        return raffle, seed

    def _relock_reserved(self, raffle_id: int, seed: Seed) -> Raffle:
        """Re-read the raffle under lock and check the reservation still holds.

        Phase 1 committed, so the raffle may have been cancelled since.
        """
        raffle = self._load_raffle(raffle_id, lock=True)
        if raffle.status == "cancelled":
            raise RaffleNotDrawableError("cancelled")
        if raffle.status != "drawing" or raffle.draw_seed != seed.value:
            raise RaffleNotDrawableError(
                f"draw reservation lost (status {raffle.status})"
            )
        return raffle

    def _complete(self, raffle: Raffle, seed: Seed, actor: Optional[str]) -> DrawResult:
        now = self._clock()
        entries = Entry.list_for_raffle(self._session, raffle.id)
        pool, selected = compute_winners(raffle, entries, seed.value)
        raffle = self._relock_reserved(raffle.id, seed)

        result = DrawResult(
            raffle_id=raffle.id,
            seed=seed.value,
            seed_mode=seed.mode,
            block_number=seed.block_number,
            block_hash=seed.block_hash,
            total_tickets=len(pool),
            prize_pool=raffle.net_prize_pool,
            total_prize_distributed=sum(w.amount for w in selected),
            created_at=now,
        )
        self._session.add(result)
        for item in selected:
            self._session.add(
                Winner(
                    raffle_id=raffle.id,
                    draw_result=result,
                    position=item.position,
                    wallet_address=item.wallet_address,
                    ticket_index=item.ticket_index,
                    total_tickets=len(pool),
                    tier=item.tier,
                    prize_amount=item.amount,
                )
            )
        transition(raffle, "completed", session=self._session, actor=actor, now=now)
        AuditLog.record(
            self._session,
            "WINNERS_SELECTED",
            subject_table="draw_results",
            raffle_id=raffle.id,
            actor=actor,
            actor_type="operator" if actor else "system",
            details={
                "winners": [
                    {"wallet": w.wallet_address, "ticket": w.ticket_index, "amount": w.amount}
                    for w in selected
                ],
                "total_prize_distributed": result.total_prize_distributed,
            },
            occurred_at=now,
        )
        try:
            self._session.flush()
        except IntegrityError as exc:
            raise RaffleNotDrawableError("already drawn") from exc
        self._session.commit()
        logger.info(
            f"Raffle {raffle.id} drew {len(selected)} winners from {len(pool)} tickets"
        )
        return result
