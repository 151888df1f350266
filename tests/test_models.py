import unittest
from datetime import datetime, timedelta, timezone

from sqlalchemy import create_engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from fairdraw.errors import (
    ChainRequestError,
    InsufficientTicketsError,
    RaffleError,
    RaffleNotFoundError,
)
from fairdraw.models import AuditLog, Base, Entry, Raffle

START = datetime(2026, 2, 1, tzinfo=timezone.utc)


def _raffle(**overrides):
    values = dict(
        raffle_type="mega",
        title="Mega",
        entry_price=5_000_000,
        start_time=START,
        end_time=START + timedelta(days=30),
        winner_count=5,
    )
    values.update(overrides)
    return Raffle(**values)


class TestModels(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = create_engine("sqlite+pysqlite:///:memory:", future=True)
        Base.metadata.create_all(self.engine)
        self.Session = sessionmaker(bind=self.engine, future=True, expire_on_commit=False)

    def tearDown(self) -> None:
        self.engine.dispose()

    def test_raffle_defaults_and_fee(self) -> None:
        raffle = _raffle()
        self.assertEqual(raffle.status, "scheduled")
        self.assertEqual(raffle.total_entries, 0)
        raffle.prize_pool = 12_345_678
        self.assertEqual(raffle.protocol_fee, 1_234_567)
        self.assertEqual(raffle.net_prize_pool, 11_111_111)
        raffle.platform_fee_bps = 0
        self.assertEqual(raffle.net_prize_pool, 12_345_678)
        self.assertFalse(raffle.is_terminal)

    def test_check_constraints(self) -> None:
        for bad in (
            dict(status="archived"),
            dict(winner_count=0),
            dict(end_time=START),
            dict(platform_fee_bps=2000),
        ):
            with self.Session() as session:
                session.add(_raffle(**bad))
                with self.assertRaises(IntegrityError, msg=str(bad)):
                    session.flush()
                session.rollback()

    def test_entry_lowercases_and_lists_in_order(self) -> None:
        with self.Session.begin() as session:
            raffle = _raffle()
            session.add(raffle)
            for i, wallet in enumerate(("0x" + "AB" * 20, "0x" + "cd" * 20)):
                session.add(
                    Entry(
                        raffle=raffle,
                        wallet_address=wallet,
                        units=i + 1,
                        amount_paid=(i + 1) * raffle.entry_price,
                        transaction_hash="0x" + ("F" if i else "E") * 64,
                    )
                )
            session.flush()
            entries = Entry.list_for_raffle(session, raffle.id)
            self.assertEqual([e.wallet_address for e in entries], ["0x" + "ab" * 20, "0x" + "cd" * 20])
            self.assertIsNotNone(Entry.get_by_transaction_hash(session, "0x" + "f" * 64))
            self.assertEqual(Raffle.list_by_status(session, "scheduled"), [raffle])

    def test_audit_details_round_trip(self) -> None:
        with self.Session.begin() as session:
            raffle = _raffle()
            session.add(raffle)
            session.flush()
            AuditLog.record(
                session,
                "RAFFLE_CREATED",
                subject_table="raffles",
                subject_id=raffle.id,
                raffle_id=raffle.id,
                details={"when": START, "winners": 5},
            )
            session.flush()
            row = AuditLog.list_for_raffle(session, raffle.id)[0]
            self.assertEqual(row.actor_type, "system")
            self.assertEqual(row.details, {"when": "2026-02-01T00:00:00+00:00", "winners": 5})


class TestErrors(unittest.TestCase):
    def test_codes_and_kinds(self) -> None:
        err = InsufficientTicketsError(3, 2)
        self.assertIsInstance(err, RaffleError)
        self.assertEqual(err.code, "INSUFFICIENT_TICKETS")
        self.assertEqual(err.kind, "integrity")
        self.assertEqual(str(err), "Cannot select 3 winners from 2 tickets")
        self.assertEqual(ChainRequestError("eth_call", "boom").kind, "external")
        self.assertIsInstance(RaffleNotFoundError(1), LookupError)


if __name__ == "__main__":
    unittest.main()
