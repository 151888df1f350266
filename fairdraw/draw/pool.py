"""Ticket pool: one addressable slot per purchased unit."""

from __future__ import annotations

from bisect import bisect_right
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

from ..errors import EmptyPoolError


@dataclass(frozen=True)
class PoolEntry:
    """The fields of an entry that matter to the pool.

    Built from :class:`~fairdraw.models.Entry` rows by
    :meth:`TicketPool.from_entries`, or directly in tests.
    """

    wallet_address: str
    units: int
    entry_id: Optional[int] = None
    refunded: bool = False


@dataclass(frozen=True)
class Ticket:
    index: int
    wallet_address: str
    entry_id: Optional[int]


class TicketPool:
    """Ordered pool of tickets laid out in entry order.

    Entry ``k`` owns the consecutive indices
    ``[sum(units[:k]), sum(units[:k + 1]))``. Tickets are resolved by binary
    search over the cumulative boundaries, so a pool of millions of units
    does not materialize one object per ticket.

    Raises
    ------
    EmptyPoolError
        If the non-refunded entries hold no units.
    """

    def __init__(self, entries: Iterable[PoolEntry]) -> None:
        self._entries: list[PoolEntry] = []
        self._ends: list[int] = []
        total = 0
        for entry in entries:
            if entry.refunded:
                continue
            if entry.units < 1:
                raise ValueError(f"Entry {entry.entry_id} has non-positive units {entry.units}")
            total += entry.units
            self._entries.append(
                PoolEntry(
                    wallet_address=entry.wallet_address.lower(),
                    units=entry.units,
                    entry_id=entry.entry_id,
                )
            )
            self._ends.append(total)
        if total == 0:
            raise EmptyPoolError()
        self._size = total

    @classmethod
    def from_entries(cls, entries: Iterable) -> "TicketPool":
        """Build a pool from ORM entries (or any objects with the same attributes)."""
        return cls(
            PoolEntry(
                wallet_address=e.wallet_address,
                units=e.units,
                entry_id=getattr(e, "id", None),
                refunded=bool(getattr(e, "refunded", False)),
            )
            for e in entries
        )

    def __len__(self) -> int:
        return self._size

    @property
    def size(self) -> int:
        return self._size

    @property
    def entries(self) -> Sequence[PoolEntry]:
        return tuple(self._entries)

    def ticket(self, index: int) -> Ticket:
        if not 0 <= index < self._size:
            raise IndexError(f"Ticket index {index} outside pool of {self._size}")
        pos = bisect_right(self._ends, index)
        entry = self._entries[pos]
        return Ticket(index=index, wallet_address=entry.wallet_address, entry_id=entry.entry_id)

    def owner(self, index: int) -> str:
        return self.ticket(index).wallet_address

    def distinct_wallets(self) -> int:
        return len({e.wallet_address for e in self._entries})

    def __iter__(self):
        start = 0
        for entry, end in zip(self._entries, self._ends):
            for index in range(start, end):
                yield Ticket(index=index, wallet_address=entry.wallet_address, entry_id=entry.entry_id)
            start = end
