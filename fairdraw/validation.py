"""Creation-time raffle validation and entry input checks."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Mapping, Optional, Sequence, Union

from .db.utils import as_utc
from .draw.tiers import PrizeTier, parse_tiers, validate_tiers
from .errors import InvalidRaffleConfigError, MaxEntriesExceededError, ValidationError
from .models import RAFFLE_TYPES, SEED_MODES, Raffle

WALLET_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")
TX_HASH_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")

MAX_TITLE_LENGTH = 200
MIN_ENTRY_PRICE = 1_000_000
MAX_ENTRY_PRICE = 100_000_000_000
MIN_DURATION = timedelta(hours=1)
MIN_WINNERS = 1
MAX_WINNERS = 100
MAX_PLATFORM_FEE_BPS = 1000
MAX_UNITS_PER_ENTRY = 10_000


@dataclass
class RaffleConfig:
    """Operator supplied parameters of a new raffle.

    ``prize_tiers`` may hold :class:`PrizeTier` objects or plain mappings;
    ``None`` selects the default table for ``winner_count``.
    ``platform_fee_bps`` and ``seed_mode`` default to the configured settings.
    """

    raffle_type: str
    title: str
    entry_price: int
    start_time: datetime
    end_time: datetime
    winner_count: int
    description: Optional[str] = None
    max_entries_per_user: Optional[int] = None
    prize_tiers: Optional[Sequence[Union[PrizeTier, Mapping[str, Any]]]] = None
    platform_fee_bps: Optional[int] = None
    seed_mode: Optional[str] = None
    allow_multiple_wins: bool = False


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def validate_raffle_config(config: RaffleConfig) -> Optional[list[PrizeTier]]:
    """Reject invalid raffle parameters.

    Returns
    -------
    Optional[list[PrizeTier]]
        The parsed explicit tier table, or ``None`` when the default table
        applies.

    Raises
    ------
    InvalidRaffleConfigError
        Naming the first offending field.
    """
    if config.raffle_type not in RAFFLE_TYPES:
        raise InvalidRaffleConfigError(
            "raffle_type", f"must be one of {', '.join(RAFFLE_TYPES)}"
        )

    title = (config.title or "").strip()
    if not title:
        raise InvalidRaffleConfigError("title", "must not be empty")
    if len(title) > MAX_TITLE_LENGTH:
        raise InvalidRaffleConfigError("title", f"must be at most {MAX_TITLE_LENGTH} characters")

    if not _is_int(config.entry_price) or not (
        MIN_ENTRY_PRICE <= config.entry_price <= MAX_ENTRY_PRICE
    ):
        raise InvalidRaffleConfigError(
            "entry_price", f"must be an integer between {MIN_ENTRY_PRICE} and {MAX_ENTRY_PRICE}"
        )

    if not isinstance(config.start_time, datetime) or not isinstance(config.end_time, datetime):
        raise InvalidRaffleConfigError("start_time", "start and end times are required")
    start, end = as_utc(config.start_time), as_utc(config.end_time)
    if end <= start:
        raise InvalidRaffleConfigError("end_time", "must be after start_time")
    if end - start < MIN_DURATION:
        raise InvalidRaffleConfigError("end_time", "raffle must last at least 1 hour")

    if not _is_int(config.winner_count) or not (MIN_WINNERS <= config.winner_count <= MAX_WINNERS):
        raise InvalidRaffleConfigError(
            "winner_count", f"must be between {MIN_WINNERS} and {MAX_WINNERS}"
        )

    if config.max_entries_per_user is not None and (
        not _is_int(config.max_entries_per_user) or config.max_entries_per_user < 1
    ):
        raise InvalidRaffleConfigError("max_entries_per_user", "must be a positive integer")

    if config.platform_fee_bps is not None and (
        not _is_int(config.platform_fee_bps)
        or not 0 <= config.platform_fee_bps <= MAX_PLATFORM_FEE_BPS
    ):
        raise InvalidRaffleConfigError(
            "platform_fee_bps", f"must be between 0 and {MAX_PLATFORM_FEE_BPS} basis points"
        )

    if config.seed_mode is not None and config.seed_mode not in SEED_MODES:
        raise InvalidRaffleConfigError("seed_mode", f"must be one of {', '.join(SEED_MODES)}")

    if config.prize_tiers is None:
        return None
    tiers = parse_tiers(
        t.as_dict() if isinstance(t, PrizeTier) else t for t in config.prize_tiers
    )
    validate_tiers(tiers, config.winner_count)
    return tiers


def normalize_wallet(address: Any, field_name: str = "wallet_address") -> str:
    """Return ``address`` lower-cased after checking it is ``0x`` + 40 hex."""
    if not isinstance(address, str) or not WALLET_RE.match(address.strip()):
        raise ValidationError(field_name, "must be 0x followed by 40 hex characters")
    return address.strip().lower()


def normalize_tx_hash(tx_hash: Any) -> str:
    """Return ``tx_hash`` lower-cased after checking it is ``0x`` + 64 hex."""
    if not isinstance(tx_hash, str) or not TX_HASH_RE.match(tx_hash.strip()):
        raise ValidationError("transaction_hash", "must be 0x followed by 64 hex characters")
    return tx_hash.strip().lower()


def validate_entry_purchase(raffle: Raffle, units: Any, amount_paid: Any) -> None:
    """Check the unit count and that the payment matches the price.

    Raises
    ------
    ValidationError
        If ``units`` is outside ``1..10000`` or ``amount_paid`` differs from
        ``entry_price * units``.
    """
    if not _is_int(units) or not 1 <= units <= MAX_UNITS_PER_ENTRY:
        raise ValidationError("units", f"must be an integer between 1 and {MAX_UNITS_PER_ENTRY}")
    if not _is_int(amount_paid) or amount_paid < 0:
        raise ValidationError("amount_paid", "must be a non-negative integer")
    expected = raffle.entry_price * units
    if amount_paid != expected:
        raise ValidationError(
            "amount_paid", f"expected {expected} for {units} units, got {amount_paid}"
        )


def ensure_within_cap(raffle: Raffle, current_units: int, units: int) -> None:
    """Raise :class:`MaxEntriesExceededError` if the wallet would pass the cap."""
    cap = raffle.max_entries_per_user
    if cap is not None and current_units + units > cap:
        raise MaxEntriesExceededError(current_units, units, cap)
