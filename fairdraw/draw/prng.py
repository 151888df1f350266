"""Deterministic sequence generator used by the winner selector.

The generator is mulberry32 with every operation reduced to 32-bit unsigned
integers, so any implementation using the same arithmetic reproduces the
same stream from the same seed. No floating point is involved.
"""

from __future__ import annotations

import re

MASK32 = 0xFFFFFFFF
INCREMENT = 0x6D2B79F5

# Number of leading seed characters, 0x prefix included, folded into the state.
SEED_PREFIX_CHARS = 10

_HEX_RE = re.compile(r"^[0-9a-fA-F]+$")


def seed_to_state(seed: str) -> int:
    """Return the 32-bit initial state for ``seed``.

    The state is the first ten characters of the seed string parsed as hex
    (so ``0x`` plus eight digits for a prefixed seed) reduced modulo 2**32.

    Raises
    ------
    ValueError
        If the seed does not start with at least one hex digit.
    """
    head = seed[:SEED_PREFIX_CHARS]
    if head[:2].lower() == "0x":
        head = head[2:]
    if not head or not _HEX_RE.match(head):
        raise ValueError(f"Seed must be a hex string, got {seed!r}")
    return int(head, 16) & MASK32


class Mulberry32:
    """Seeded 32-bit pseudo-random generator."""

    def __init__(self, seed: str) -> None:
        self.seed = seed
        self._state = seed_to_state(seed)
        self.calls = 0

    def next_uint32(self) -> int:
        self._state = (self._state + INCREMENT) & MASK32
        s = self._state
        t = ((s ^ (s >> 15)) * (s | 1)) & MASK32
        t = ((t + (((t ^ (t >> 7)) * (t | 61)) & MASK32)) & MASK32) ^ t
        self.calls += 1
        return (t ^ (t >> 14)) & MASK32

    def next_uniform_int(self, lo: int, hi: int) -> int:
        """Return an integer in ``[lo, hi)``.

        Computed as ``lo + (u * (hi - lo)) >> 32`` from one 32-bit output
        ``u``; the bias for ranges far below 2**32 is negligible and the
        mapping is exactly reproducible.
        """
        if hi <= lo:
            raise ValueError(f"Empty range [{lo}, {hi})")
        span = hi - lo
        return lo + ((self.next_uint32() * span) >> 32)
