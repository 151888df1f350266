"""Ticket pool, seeded selection, prize tiers and draw orchestration."""

from .pool import PoolEntry, Ticket, TicketPool
from .prng import Mulberry32, seed_to_state
from .randomness import (
    BlockHashRandomness,
    CryptoRandomness,
    RandomnessSource,
    Seed,
    randomness_for_mode,
)
from .tiers import PrizeSlot, PrizeTier, default_tiers, distribute, parse_tiers, validate_tiers
from .selector import SelectedWinner, select_winners
from .engine import DrawEngine, compute_winners

__all__ = [
    "BlockHashRandomness",
    "CryptoRandomness",
    "DrawEngine",
    "Mulberry32",
    "PoolEntry",
    "PrizeSlot",
    "PrizeTier",
    "RandomnessSource",
    "Seed",
    "SelectedWinner",
    "Ticket",
    "TicketPool",
    "compute_winners",
    "default_tiers",
    "distribute",
    "parse_tiers",
    "randomness_for_mode",
    "seed_to_state",
    "select_winners",
    "validate_tiers",
]
