import unittest
from datetime import datetime, timedelta, timezone

from fairdraw.draw.tiers import PrizeTier
from fairdraw.errors import InvalidRaffleConfigError, MaxEntriesExceededError, ValidationError
from fairdraw.models import Raffle
from fairdraw.validation import (
    RaffleConfig,
    ensure_within_cap,
    normalize_tx_hash,
    normalize_wallet,
    validate_entry_purchase,
    validate_raffle_config,
)

START = datetime(2026, 5, 1, tzinfo=timezone.utc)


def _config(**overrides):
    values = dict(
        raffle_type="weekly",
        title="Weekly",
        entry_price=1_000_000,
        start_time=START,
        end_time=START + timedelta(days=7),
        winner_count=3,
    )
    values.update(overrides)
    return RaffleConfig(**values)


class TestRaffleConfig(unittest.TestCase):
    def test_valid_config_uses_default_tiers(self):
        self.assertIsNone(validate_raffle_config(_config()))

    def test_explicit_tiers_are_parsed(self):
        tiers = validate_raffle_config(
            _config(
                winner_count=2,
                prize_tiers=[
                    {"name": "Gold", "percentage": 60},
                    PrizeTier("Silver", 40),
                ],
            )
        )
        self.assertEqual([t.name for t in tiers], ["Gold", "Silver"])

    def test_each_invalid_field_is_named(self):
        cases = {
            "raffle_type": _config(raffle_type="hourly"),
            "title": _config(title="   "),
            "entry_price": _config(entry_price=999_999),
            "end_time": _config(end_time=START + timedelta(minutes=59)),
            "winner_count": _config(winner_count=101),
            "max_entries_per_user": _config(max_entries_per_user=0),
            "platform_fee_bps": _config(platform_fee_bps=1001),
            "seed_mode": _config(seed_mode="dice"),
            "prize_tiers": _config(prize_tiers=[{"name": "A", "percentage": 100}]),
        }
        for field, config in cases.items():
            with self.assertRaises(InvalidRaffleConfigError) as ctx:
                validate_raffle_config(config)
            self.assertTrue(ctx.exception.field.startswith(field), field)

    def test_end_before_start(self):
        with self.assertRaises(InvalidRaffleConfigError) as ctx:
            validate_raffle_config(_config(end_time=START - timedelta(hours=2)))
        self.assertEqual(ctx.exception.field, "end_time")

    def test_title_length(self):
        validate_raffle_config(_config(title="x" * 200))
        with self.assertRaises(InvalidRaffleConfigError):
            validate_raffle_config(_config(title="x" * 201))


class TestEntryInputs(unittest.TestCase):
    def setUp(self):
        self.raffle = Raffle(
            raffle_type="daily",
            title="Entries",
            entry_price=2_000_000,
            start_time=START,
            end_time=START + timedelta(days=1),
            winner_count=1,
            max_entries_per_user=10,
        )

    def test_normalize_wallet(self):
        self.assertEqual(normalize_wallet(" 0x" + "AB" * 20 + " "), "0x" + "ab" * 20)
        for bad in ("0x123", "ab" * 20, None, "0x" + "g" * 40):
            with self.assertRaises(ValidationError):
                normalize_wallet(bad)

    def test_normalize_tx_hash(self):
        self.assertEqual(normalize_tx_hash("0x" + "F" * 64), "0x" + "f" * 64)
        with self.assertRaises(ValidationError):
            normalize_tx_hash("0x" + "f" * 63)

    def test_amount_must_match_price(self):
        validate_entry_purchase(self.raffle, 3, 6_000_000)
        with self.assertRaises(ValidationError) as ctx:
            validate_entry_purchase(self.raffle, 3, 5_999_999)
        self.assertEqual(ctx.exception.field, "amount_paid")

    def test_units_bounds(self):
        for units in (0, 10_001, True, 1.5):
            with self.assertRaises(ValidationError):
                validate_entry_purchase(self.raffle, units, 2_000_000)

    def test_cap(self):
        ensure_within_cap(self.raffle, 7, 3)
        with self.assertRaises(MaxEntriesExceededError):
            ensure_within_cap(self.raffle, 8, 3)
        self.raffle.max_entries_per_user = None
        ensure_within_cap(self.raffle, 1_000, 10_000)


if __name__ == "__main__":
    unittest.main()
