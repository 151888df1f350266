"""Error taxonomy shared by the raffle engine.

Every error carries a stable machine ``code``, a ``kind`` describing which
family it belongs to, and a human readable ``reason``. The kinds are:

``configuration``
    Invalid raffle parameters, rejected when the raffle is created.
``state``
    The operation is not allowed in the current raffle or payout state.
``integrity``
    Input that would break an invariant (reused transaction hash, winner
    count larger than the pool, ...). Never auto-corrected.
``external``
    A collaborator (chain RPC, transfer service) failed.
``not_found``
    A referenced row does not exist.
"""

from __future__ import annotations

from typing import Optional


class RaffleError(Exception):
    """Base class for all raffle engine errors."""

    code: str = "RAFFLE_ERROR"
    kind: str = "state"

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason

    def __repr__(self) -> str:  # pragma: no cover - repr is trivial
        return f"<{type(self).__name__}(code={self.code}, reason={self.reason!r})>"


# ---------------------------------------------------------------------------
# Configuration and input validation
# ---------------------------------------------------------------------------


class InvalidRaffleConfigError(RaffleError, ValueError):
    code = "INVALID_RAFFLE_CONFIG"
    kind = "configuration"

    def __init__(self, field: str, reason: str) -> None:
        super().__init__(f"Invalid raffle config - {field}: {reason}")
        self.field = field


class ValidationError(RaffleError, ValueError):
    code = "VALIDATION_ERROR"
    kind = "integrity"

    def __init__(self, field: str, reason: str) -> None:
        super().__init__(f"Validation failed - {field}: {reason}")
        self.field = field


# ---------------------------------------------------------------------------
# Raffle state
# ---------------------------------------------------------------------------


class InvalidStatusTransitionError(RaffleError):
    code = "INVALID_STATUS_TRANSITION"

    def __init__(self, current: str, requested: str) -> None:
        super().__init__(f"Invalid status transition: {current} -> {requested}")
        self.current = current
        self.requested = requested


class RaffleNotActiveError(RaffleError):
    code = "RAFFLE_NOT_ACTIVE"

    def __init__(self, raffle_id: Optional[int], reason: str) -> None:
        super().__init__(f"Raffle {raffle_id} is not accepting entries: {reason}")
        self.raffle_id = raffle_id


class MaxEntriesExceededError(RaffleError):
    code = "MAX_ENTRIES_EXCEEDED"

    def __init__(self, current: int, additional: int, maximum: int) -> None:
        super().__init__(
            f"Max entries exceeded: {current} current + {additional} new = "
            f"{current + additional}, max allowed: {maximum}"
        )


class RaffleNotDrawableError(RaffleError):
    code = "RAFFLE_NOT_DRAWABLE"

    def __init__(self, reason: str) -> None:
        super().__init__(f"Raffle cannot be drawn: {reason}")


class EmptyPoolError(RaffleError, ValueError):
    code = "EMPTY_POOL"

    def __init__(self, reason: str = "No tickets in raffle") -> None:
        super().__init__(reason)


class InsufficientTicketsError(RaffleError, ValueError):
    code = "INSUFFICIENT_TICKETS"
    kind = "integrity"

    def __init__(self, requested: int, available: int, detail: str = "tickets") -> None:
        super().__init__(
            f"Cannot select {requested} winners from {available} {detail}"
        )
        self.requested = requested
        self.available = available


# ---------------------------------------------------------------------------
# Payout state
# ---------------------------------------------------------------------------


class InvalidPayoutTransitionError(RaffleError):
    code = "INVALID_PAYOUT_TRANSITION"

    def __init__(self, current: str, requested: str) -> None:
        super().__init__(f"Invalid payout transition: {current} -> {requested}")
        self.current = current
        self.requested = requested


class PayoutAlreadyProcessedError(RaffleError):
    code = "PAYOUT_ALREADY_PROCESSED"

    def __init__(self, winner_id: int) -> None:
        super().__init__(f"Payout already processed for winner {winner_id} (status: paid)")
        self.winner_id = winner_id


class PayoutInProgressError(RaffleError):
    code = "PAYOUT_IN_PROGRESS"

    def __init__(self, winner_id: int) -> None:
        super().__init__(f"Payout for winner {winner_id} is already being processed")
        self.winner_id = winner_id


class PayoutRetryLimitError(RaffleError):
    code = "PAYOUT_RETRY_LIMIT"

    def __init__(self, winner_id: int, attempts: int) -> None:
        super().__init__(
            f"Payout for winner {winner_id} reached the attempt limit ({attempts})"
        )
        self.winner_id = winner_id
        self.attempts = attempts


# ---------------------------------------------------------------------------
# Integrity of inbound transfers
# ---------------------------------------------------------------------------


class DuplicateTransactionError(RaffleError, ValueError):
    code = "DUPLICATE_TRANSACTION"
    kind = "integrity"

    def __init__(self, tx_hash: str, reason: str = "already used by an entry") -> None:
        super().__init__(f"Transaction {tx_hash} {reason}")
        self.tx_hash = tx_hash


class InvalidTransactionError(RaffleError, ValueError):
    code = "INVALID_TRANSACTION"
    kind = "integrity"

    def __init__(self, tx_hash: str, reason: str) -> None:
        super().__init__(f"Invalid transaction {tx_hash}: {reason}")
        self.tx_hash = tx_hash


# ---------------------------------------------------------------------------
# External collaborators
# ---------------------------------------------------------------------------


class RandomnessUnavailableError(RaffleError, RuntimeError):
    code = "RANDOMNESS_UNAVAILABLE"
    kind = "external"

    def __init__(self, reason: str) -> None:
        super().__init__(f"Random seed unavailable: {reason}")


class ChainRequestError(RaffleError, RuntimeError):
    code = "CHAIN_REQUEST_ERROR"
    kind = "external"

    def __init__(self, method: str, reason: str) -> None:
        super().__init__(f"Chain request {method} failed: {reason}")
        self.method = method


class TransferServiceError(RaffleError, RuntimeError):
    code = "TRANSFER_SERVICE_ERROR"
    kind = "external"


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


class RaffleNotFoundError(RaffleError, LookupError):
    code = "RAFFLE_NOT_FOUND"
    kind = "not_found"

    def __init__(self, raffle_id: int) -> None:
        super().__init__(f"Raffle not found: {raffle_id}")


class WinnerNotFoundError(RaffleError, LookupError):
    code = "WINNER_NOT_FOUND"
    kind = "not_found"

    def __init__(self, winner_id: int) -> None:
        super().__init__(f"Winner not found: {winner_id}")


class DrawResultNotFoundError(RaffleError, LookupError):
    code = "DRAW_RESULT_NOT_FOUND"
    kind = "not_found"

    def __init__(self, raffle_id: int) -> None:
        super().__init__(f"No draw result stored for raffle {raffle_id}")


__all__ = [
    "ChainRequestError",
    "DrawResultNotFoundError",
    "DuplicateTransactionError",
    "EmptyPoolError",
    "InsufficientTicketsError",
    "InvalidPayoutTransitionError",
    "InvalidRaffleConfigError",
    "InvalidStatusTransitionError",
    "InvalidTransactionError",
    "MaxEntriesExceededError",
    "PayoutAlreadyProcessedError",
    "PayoutInProgressError",
    "PayoutRetryLimitError",
    "RaffleError",
    "RaffleNotActiveError",
    "RaffleNotDrawableError",
    "RaffleNotFoundError",
    "RandomnessUnavailableError",
    "TransferServiceError",
    "ValidationError",
    "WinnerNotFoundError",
]
