"""Contracts of the external chain collaborators consumed by the engine."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Protocol


@dataclass(frozen=True)
class BlockRef:
    """A block identified by number and hash."""

    number: int
    hash: str


@dataclass(frozen=True)
class TransferResult:
    """Outcome of one transfer submission.

    Attributes
    ----------
    success : bool
        ``True`` when the transfer service accepted and executed the transfer.
    transaction_id : Optional[str]
        On-chain transaction identifier, present on success.
    error : Optional[str]
        Human readable failure reason, present when ``success`` is false.
    """

    success: bool
    transaction_id: Optional[str] = None
    error: Optional[str] = None


class ChainReader(Protocol):
    """Read access to the settlement chain."""

    def latest_block(self) -> BlockRef:
        """Return the most recent finalized block."""
        ...

    def get_transaction(self, tx_hash: str) -> Optional[dict[str, Any]]:
        """Return the transaction object or ``None`` when unknown."""
        ...

    def get_transaction_receipt(self, tx_hash: str) -> Optional[dict[str, Any]]:
        """Return the receipt or ``None`` when the transaction is not mined."""
        ...


class TransferExecutor(Protocol):
    """Capability that submits a token transfer to a wallet."""

    def send(
        self, wallet_address: str, amount: int, reference: Optional[str] = None
    ) -> TransferResult:
        ...
