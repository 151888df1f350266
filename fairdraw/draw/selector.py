"""Winner selection by rejection sampling over the ticket pool."""

from __future__ import annotations

from dataclasses import dataclass
from typing import AbstractSet, Optional, Protocol, Sequence

from ..errors import InsufficientTicketsError
from .pool import TicketPool
from .prng import Mulberry32
from .tiers import PrizeTier, distribute

# Rejection draws allowed per requested winner before selection switches to
# drawing directly among the still eligible tickets. Only reached when almost
# every ticket belongs to an already chosen wallet.
DRAWS_PER_WINNER = 1000


class UniformSequence(Protocol):
    def next_uniform_int(self, lo: int, hi: int) -> int:
        ...


@dataclass(frozen=True)
class SelectedWinner:
    """One winner produced by :func:`select_winners`.

    Attributes
    ----------
    position : int
        1-based rank; positions follow ascending ticket index.
    ticket_index : int
        Index of the winning ticket in the pool.
    wallet_address : str
        Owner of the ticket.
    tier : str
        Tier label of the position.
    amount : int
        Prize in integer minor units.
    """

    position: int
    ticket_index: int
    wallet_address: str
    tier: str
    amount: int


def select_winners(
    pool: TicketPool,
    winner_count: int,
    prize_pool: int,
    seed: str,
    tiers: Optional[Sequence[PrizeTier]] = None,
    *,
    one_win_per_wallet: bool = True,
    sequence: Optional[UniformSequence] = None,
) -> list[SelectedWinner]:
    """Pick ``winner_count`` distinct tickets and attach their prizes.

    Selection is a pure function of its inputs:

    1. Draw ``next_uniform_int(0, len(pool))`` repeatedly from the seeded
       sequence. A draw is rejected when the index was already chosen or,
       with ``one_win_per_wallet``, when its owner already won. After
       ``winner_count * DRAWS_PER_WINNER`` draws, each further pick is one
       ``next_uniform_int(0, n)`` over the ``n`` still eligible tickets,
       taken in pool order.
    2. Sort the accepted indices ascending; that order defines positions.
    3. Assign tier labels and amounts positionally from :func:`distribute`.

    Parameters
    ----------
    pool : TicketPool
        Pool built from the raffle's non-refunded entries.
    winner_count : int
        Number of winners to select.
    prize_pool : int
        Net prize pool to distribute, in minor units.
    seed : str
        Hex seed of the draw.
    tiers : Optional[Sequence[PrizeTier]]
        Explicit tier table; ``None`` uses the default table.
    one_win_per_wallet : bool, default: True
        Reject tickets of wallets that already won.
    sequence : Optional[UniformSequence]
        Overrides the generator derived from ``seed``.

    Returns
    -------
    list[SelectedWinner]
        Winners ordered by position.

    Raises
    ------
    InsufficientTicketsError
        If the pool (or its distinct wallets, under ``one_win_per_wallet``)
        is smaller than ``winner_count``.
    """
    if winner_count < 1:
        raise ValueError("winner_count must be at least 1")
    pool_size = len(pool)
    if winner_count > pool_size:
        raise InsufficientTicketsError(winner_count, pool_size)
    if one_win_per_wallet:
        wallets = pool.distinct_wallets()
        if winner_count > wallets:
            raise InsufficientTicketsError(winner_count, wallets, "distinct wallets")

    # Fail on a bad tier table before consuming randomness.
    slots = distribute(prize_pool, winner_count, tiers)

    rng = sequence if sequence is not None else Mulberry32(seed)
    chosen: set[int] = set()
    winning_wallets: set[str] = set()
    budget = winner_count * DRAWS_PER_WINNER
    draws = 0
    while len(chosen) < winner_count:
        if draws < budget:
            draws += 1
            index = rng.next_uniform_int(0, pool_size)
        else:
            excluded = winning_wallets if one_win_per_wallet else frozenset()
            index = _draw_eligible(rng, _eligible_spans(pool, chosen, excluded))
        if index in chosen:
            continue
        wallet = pool.owner(index)
        if one_win_per_wallet and wallet in winning_wallets:
            continue
        chosen.add(index)
        winning_wallets.add(wallet)

    return [
        SelectedWinner(
            position=position,
            ticket_index=index,
            wallet_address=pool.owner(index),
            tier=slot.tier,
            amount=slot.amount,
        )
        for position, (index, slot) in enumerate(zip(sorted(chosen), slots), start=1)
    ]


def _eligible_spans(
    pool: TicketPool, chosen: AbstractSet[int], excluded_wallets: AbstractSet[str]
) -> list[tuple[int, int]]:
    """Half-open index ranges of tickets that could still win, in pool order."""
    spans: list[tuple[int, int]] = []
    start = 0
    for entry in pool.entries:
        end = start + entry.units
        if entry.wallet_address not in excluded_wallets:
            lo = start
            for index in sorted(i for i in chosen if start <= i < end):
                if index > lo:
                    spans.append((lo, index))
                lo = index + 1
            if lo < end:
                spans.append((lo, end))
        start = end
    return spans


def _draw_eligible(rng: UniformSequence, spans: Sequence[tuple[int, int]]) -> int:
    """Draw one ticket uniformly from ``spans`` with a single generator call."""
    total = sum(end - start for start, end in spans)
    if total == 0:
        raise InsufficientTicketsError(1, 0, "selectable tickets")
    offset = rng.next_uniform_int(0, total)
    for start, end in spans:
        if offset < end - start:
            return start + offset
        offset -= end - start
    raise AssertionError("offset outside eligible spans")
