"""Seed sources for raffle draws.

Two modes are supported and chosen per raffle (``Raffle.seed_mode``):

``block_hash``
    The seed is the hash of the latest finalized block of the settlement
    chain. The block number and hash are stored with the draw so anyone can
    refetch the block and confirm the seed.
``crypto``
    The seed comes from the operating system CSPRNG. Reproducible from the
    stored seed, but outsiders cannot confirm it was not chosen.

Both produce ``0x`` followed by 64 lowercase hex characters. A failure
raises :class:`~fairdraw.errors.RandomnessUnavailableError`; there is no
fallback to a weaker source.
"""

from __future__ import annotations

import logging
import re
import secrets
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional, Protocol

from ..errors import ChainRequestError, RandomnessUnavailableError

if TYPE_CHECKING:
    from ..chain.base import ChainReader

logger = logging.getLogger(__name__)

SEED_RE = re.compile(r"^0x[0-9a-f]{64}$")


@dataclass(frozen=True)
class Seed:
    """A draw seed together with the evidence needed to re-derive it."""

    value: str
    mode: str
    block_number: Optional[int] = None
    block_hash: Optional[str] = None


class RandomnessSource(Protocol):
    mode: str

    def get_seed(self) -> Seed:
        ...


class BlockHashRandomness:
    """Seed from the latest finalized block hash."""

    mode = "block_hash"

    def __init__(self, chain: "ChainReader") -> None:
        self._chain = chain

    def get_seed(self) -> Seed:
        try:
            block = self._chain.latest_block()
        except ChainRequestError as exc:
            raise RandomnessUnavailableError(exc.reason) from exc

        block_hash = (block.hash or "").lower()
        if not SEED_RE.match(block_hash):
            raise RandomnessUnavailableError(f"malformed block hash {block.hash!r}")
        logger.info(f"Using block {block.number} hash as draw seed")
        return Seed(
            value=block_hash,
            mode=self.mode,
            block_number=block.number,
            block_hash=block_hash,
        )


class CryptoRandomness:
    """Seed from the operating system CSPRNG."""

    mode = "crypto"

    def get_seed(self) -> Seed:
        return Seed(value="0x" + secrets.token_hex(32), mode=self.mode)


def randomness_for_mode(mode: str, chain: Optional["ChainReader"] = None) -> RandomnessSource:
    """Return the source implementing ``mode``.

    Raises
    ------
    ValueError
        If ``mode`` is unknown.
    RandomnessUnavailableError
        If ``block_hash`` is requested and no chain client can be built.
    """
    if mode == CryptoRandomness.mode:
        return CryptoRandomness()
    if mode == BlockHashRandomness.mode:
        if chain is None:
            from ..chain.api import ChainClient

            try:
                chain = ChainClient()
            except ValueError as exc:
                raise RandomnessUnavailableError(str(exc)) from exc
        return BlockHashRandomness(chain)
    raise ValueError(f"Unknown seed mode '{mode}'")
