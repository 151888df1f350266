"""Prize tier tables and their per-winner expansion."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_FLOOR
from typing import Any, Iterable, Mapping, Optional, Sequence

from ..errors import InvalidRaffleConfigError

PERCENT_EPSILON = Decimal("0.01")

ORDINALS = ("1st", "2nd", "3rd", "4th", "5th")


@dataclass(frozen=True)
class PrizeTier:
    """A ranked prize bracket.

    Attributes
    ----------
    name : str
        Display label, e.g. ``"1st"`` or ``"Runner-up"``.
    percentage : Decimal
        Share of the net prize pool allocated to the whole tier.
    winner_count : int
        Number of winners splitting the tier allocation evenly.
    """

    name: str
    percentage: Decimal
    winner_count: int = 1

    def as_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "percentage": str(self.percentage),
            "winner_count": self.winner_count,
        }


@dataclass(frozen=True)
class PrizeSlot:
    """Prize assigned to one winner position."""

    tier: str
    amount: int


_DEFAULT_PERCENTAGES: dict[int, tuple[int, ...]] = {
    1: (100,),
    3: (50, 30, 20),
    5: (40, 25, 20, 10, 5),
}


def default_tiers(winner_count: int) -> list[PrizeTier]:
    """Return the built-in tier table for ``winner_count`` winners.

    1, 3 and 5 winners get ranked tables; any other count is an even split
    labelled ``Winner #i``.
    """
    if winner_count < 1:
        raise InvalidRaffleConfigError("winner_count", "must be at least 1")
    percentages = _DEFAULT_PERCENTAGES.get(winner_count)
    if percentages is not None:
        return [
            PrizeTier(name=ORDINALS[i], percentage=Decimal(p))
            for i, p in enumerate(percentages)
        ]
    share = Decimal(100) / Decimal(winner_count)
    return [
        PrizeTier(name=f"Winner #{i + 1}", percentage=share) for i in range(winner_count)
    ]


def parse_tiers(raw: Optional[Iterable[Mapping[str, Any]]]) -> Optional[list[PrizeTier]]:
    """Build :class:`PrizeTier` objects from the JSON stored on a raffle.

    Raises
    ------
    InvalidRaffleConfigError
        If an item lacks a field or carries a non-numeric value.
    """
    if raw is None:
        return None
    tiers = []
    for i, item in enumerate(raw):
        try:
            tiers.append(
                PrizeTier(
                    name=str(item["name"]).strip(),
                    percentage=Decimal(str(item["percentage"])),
                    winner_count=int(item.get("winner_count", 1)),
                )
            )
        except (KeyError, TypeError, ValueError, ArithmeticError) as exc:
            raise InvalidRaffleConfigError(f"prize_tiers[{i}]", f"malformed tier: {exc}") from exc
    return tiers


def validate_tiers(tiers: Sequence[PrizeTier], winner_count: int) -> None:
    """Check a tier table against the raffle's winner count.

    Raises
    ------
    InvalidRaffleConfigError
        If a tier is unnamed, has a non-positive percentage or winner count,
        the percentages do not sum to 100 (within 0.01) or the tier winner
        counts do not sum to ``winner_count``.
    """
    if not tiers:
        raise InvalidRaffleConfigError("prize_tiers", "at least one tier is required")
    for i, tier in enumerate(tiers):
        if not tier.name:
            raise InvalidRaffleConfigError(f"prize_tiers[{i}].name", "must not be empty")
        if tier.percentage <= 0:
            raise InvalidRaffleConfigError(f"prize_tiers[{i}].percentage", "must be positive")
        if tier.winner_count < 1:
            raise InvalidRaffleConfigError(f"prize_tiers[{i}].winner_count", "must be at least 1")

    total_pct = sum((t.percentage for t in tiers), Decimal(0))
    if abs(total_pct - Decimal(100)) > PERCENT_EPSILON:
        raise InvalidRaffleConfigError(
            "prize_tiers", f"percentages must sum to 100, got {total_pct}"
        )
    total_winners = sum(t.winner_count for t in tiers)
    if total_winners != winner_count:
        raise InvalidRaffleConfigError(
            "prize_tiers",
            f"tier winner counts sum to {total_winners}, expected {winner_count}",
        )


def distribute(total_prize: int, winner_count: int, tiers: Optional[Sequence[PrizeTier]] = None) -> list[PrizeSlot]:
    """Split ``total_prize`` across ``winner_count`` ranked positions.

    Each tier receives ``floor(total_prize * percentage / 100)``, split
    evenly (floored again) among its winners. Truncation remainders stay
    with the platform and are not redistributed.

    Parameters
    ----------
    total_prize : int
        Net prize pool in integer minor units.
    winner_count : int
        Number of winner positions to fill.
    tiers : Optional[Sequence[PrizeTier]]
        Explicit table; ``None`` selects :func:`default_tiers`.

    Returns
    -------
    list[PrizeSlot]
        Exactly ``winner_count`` slots, best position first.
    """
    if total_prize < 0:
        raise ValueError("total_prize must not be negative")
    table = list(tiers) if tiers is not None else default_tiers(winner_count)
    validate_tiers(table, winner_count)

    slots: list[PrizeSlot] = []
    for tier in table:
        allocation = (Decimal(total_prize) * tier.percentage / Decimal(100)).to_integral_value(
            rounding=ROUND_FLOOR
        )
        per_winner = int(allocation) // tier.winner_count
        for i in range(tier.winner_count):
            label = tier.name if tier.winner_count == 1 else f"{tier.name} ({i + 1}/{tier.winner_count})"
            slots.append(PrizeSlot(tier=label, amount=per_winner))
    return slots
