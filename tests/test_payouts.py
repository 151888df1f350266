from __future__ import annotations

import os
import tempfile
import threading
import unittest
from datetime import datetime, timedelta, timezone

from fairdraw.chain.base import TransferResult
from fairdraw.db.engine import get_sessionmaker, make_engine
from fairdraw.errors import (
    DrawResultNotFoundError,
    InvalidPayoutTransitionError,
    PayoutAlreadyProcessedError,
    PayoutInProgressError,
    PayoutRetryLimitError,
    TransferServiceError,
    WinnerNotFoundError,
)
from fairdraw.models import AuditLog, Base, DrawResult, PayoutRecord, Raffle, Winner
from fairdraw.payouts import (
    PayoutProcessor,
    RetryRequested,
    can_transition_payout,
    get_payout_summary,
)

NOW = datetime(2026, 6, 2, 9, 0, tzinfo=timezone.utc)
WALLETS = ["0x" + c * 40 for c in "abc"]


class FakeTransfer:
    """Records every submission and replays scripted outcomes per wallet."""

    def __init__(self, outcomes=None):
        self.outcomes = outcomes or {}
        self.calls = []
        self._lock = threading.Lock()
        self._counter = 0

    def send(self, wallet_address, amount, reference=None):
        with self._lock:
            self.calls.append((wallet_address, amount, reference))
            self._counter += 1
            n = self._counter
        scripted = self.outcomes.get(wallet_address)
        if isinstance(scripted, list):
            scripted = scripted.pop(0) if scripted else None
        if isinstance(scripted, Exception):
            raise scripted
        if scripted is not None:
            return scripted
        return TransferResult(success=True, transaction_id=f"0xtx{n}")


class PayoutTests(unittest.TestCase):
    def setUp(self) -> None:
        # Worker threads need a shared database, so use a file instead of :memory:.
        self.tmpdir = tempfile.TemporaryDirectory()
        self.engine = make_engine(f"sqlite:///{os.path.join(self.tmpdir.name, 'payouts.db')}")
        Base.metadata.create_all(self.engine)
        self.Session = get_sessionmaker(self.engine)

    def tearDown(self) -> None:
        self.engine.dispose()
        self.tmpdir.cleanup()

    def _seed_drawn_raffle(self, amounts=(500, 300, 200), drawn=True) -> tuple[int, list[int]]:
        with self.Session.begin() as session:
            raffle = Raffle(
                raffle_type="weekly",
                title="Payouts",
                entry_price=1_000_000,
                start_time=NOW - timedelta(days=7),
                end_time=NOW - timedelta(hours=1),
                winner_count=len(amounts),
                status="completed" if drawn else "active",
            )
            session.add(raffle)
            session.flush()
            if not drawn:
                return raffle.id, []
            result = DrawResult(
                raffle_id=raffle.id,
                seed="0x" + "1" * 64,
                seed_mode="crypto",
                total_tickets=10,
                prize_pool=sum(amounts),
                total_prize_distributed=sum(amounts),
            )
            session.add(result)
            winners = [
                Winner(
                    raffle_id=raffle.id,
                    draw_result=result,
                    position=i + 1,
                    wallet_address=WALLETS[i],
                    ticket_index=i,
                    total_tickets=10,
                    tier=f"Winner #{i + 1}",
                    prize_amount=amount,
                )
                for i, amount in enumerate(amounts)
            ]
            session.add_all(winners)
            session.flush()
            return raffle.id, [w.id for w in winners]

    def _processor(self, transfer, **kwargs) -> PayoutProcessor:
        kwargs.setdefault("max_attempts", 3)
        kwargs.setdefault("max_workers", 2)
        return PayoutProcessor(self.Session, transfer, clock=lambda: NOW, **kwargs)

    def _winner(self, winner_id) -> Winner:
        with self.Session() as session:
            return session.get(Winner, winner_id)

    def test_state_machine(self) -> None:
        self.assertTrue(can_transition_payout("pending", "processing"))
        self.assertTrue(can_transition_payout("failed", "pending"))
        self.assertFalse(can_transition_payout("paid", "pending"))
        self.assertFalse(can_transition_payout("failed", "processing"))
        self.assertFalse(can_transition_payout("pending", "paid"))

    def test_successful_payout(self) -> None:
        raffle_id, (winner_id, *_) = self._seed_drawn_raffle()
        transfer = FakeTransfer()
        record = self._processor(transfer).send_payout(winner_id)

        self.assertEqual(record.status, "paid")
        self.assertEqual(record.attempt, 1)
        self.assertEqual(record.transaction_id, "0xtx1")
        self.assertEqual(
            transfer.calls, [(WALLETS[0], 500, f"raffle-{raffle_id}-winner-{winner_id}-attempt-1")]
        )
        winner = self._winner(winner_id)
        self.assertEqual(winner.payout_status, "paid")
        self.assertEqual(winner.payout_attempts, 1)
        self.assertIsNotNone(winner.paid_at)
        with self.Session() as session:
            rows = AuditLog.list_for_raffle(session, raffle_id, action="PAYOUT_SENT")
            self.assertEqual(len(rows), 1)
            self.assertEqual(rows[0].details["transaction_id"], "0xtx1")

    def test_paid_winner_is_never_paid_twice(self) -> None:
        _, (winner_id, *_) = self._seed_drawn_raffle()
        transfer = FakeTransfer()
        processor = self._processor(transfer)
        processor.send_payout(winner_id)
        with self.assertRaises(PayoutAlreadyProcessedError):
            processor.send_payout(winner_id)
        with self.assertRaises(PayoutAlreadyProcessedError):
            processor.retry(RetryRequested(winner_id, "ops"))
        self.assertEqual(len(transfer.calls), 1)

    def test_concurrent_trigger_is_rejected_while_processing(self) -> None:
        _, (winner_id, *_) = self._seed_drawn_raffle()
        seen = []

        class ReentrantTransfer(FakeTransfer):
            def send(inner, wallet_address, amount, reference=None):
                try:
                    processor.send_payout(winner_id)
                except PayoutInProgressError as exc:
                    seen.append(exc)
                return super().send(wallet_address, amount, reference)

        transfer = ReentrantTransfer()
        processor = self._processor(transfer)
        record = processor.send_payout(winner_id)

        self.assertEqual(record.status, "paid")
        self.assertEqual(len(seen), 1)
        self.assertEqual(len(transfer.calls), 1)
        with self.Session() as session:
            self.assertEqual(len(PayoutRecord.list_for_winner(session, winner_id)), 1)

    def test_failure_then_explicit_retry(self) -> None:
        raffle_id, (winner_id, *_) = self._seed_drawn_raffle()
        transfer = FakeTransfer(
            {WALLETS[0]: [TransferResult(success=False, error="insufficient gas")]}
        )
        processor = self._processor(transfer)

        failed = processor.send_payout(winner_id)
        self.assertEqual(failed.status, "failed")
        self.assertEqual(failed.failure_reason, "insufficient gas")
        self.assertEqual(self._winner(winner_id).payout_status, "failed")

        # A failed payout is only reopened by an explicit retry.
        with self.assertRaises(InvalidPayoutTransitionError):
            processor.send_payout(winner_id)

        paid = processor.retry(RetryRequested(winner_id, "ops@example.com", "gas topped up"))
        self.assertEqual(paid.status, "paid")
        self.assertEqual(paid.attempt, 2)
        self.assertEqual(len(transfer.calls), 2)
        with self.Session() as session:
            records = PayoutRecord.list_for_winner(session, winner_id)
            self.assertEqual([r.status for r in records], ["failed", "paid"])
            retry_rows = AuditLog.list_for_raffle(session, raffle_id, action="PAYOUT_RETRY_REQUESTED")
            self.assertEqual(len(retry_rows), 1)
            self.assertEqual(retry_rows[0].actor, "ops@example.com")

    def test_transfer_exception_marks_attempt_failed(self) -> None:
        _, (winner_id, *_) = self._seed_drawn_raffle()
        transfer = FakeTransfer({WALLETS[0]: TransferServiceError("Transfer timed out after 60.0s")})
        record = self._processor(transfer).send_payout(winner_id)
        self.assertEqual(record.status, "failed")
        self.assertIn("timed out", record.failure_reason)
        self.assertEqual(self._winner(winner_id).payout_status, "failed")

    def test_success_without_transaction_id_is_failure(self) -> None:
        _, (winner_id, *_) = self._seed_drawn_raffle()
        transfer = FakeTransfer({WALLETS[0]: TransferResult(success=True)})
        record = self._processor(transfer).send_payout(winner_id)
        self.assertEqual(record.status, "failed")

    def test_retry_limit(self) -> None:
        _, (winner_id, *_) = self._seed_drawn_raffle()
        transfer = FakeTransfer({WALLETS[0]: TransferResult(success=False, error="rejected")})
        processor = self._processor(transfer, max_attempts=1)
        processor.send_payout(winner_id)
        with self.assertRaises(PayoutRetryLimitError):
            processor.request_retry(RetryRequested(winner_id, "ops"))
        self.assertEqual(self._winner(winner_id).payout_status, "failed")

    def test_retry_requires_failed_status(self) -> None:
        _, (winner_id, *_) = self._seed_drawn_raffle()
        with self.assertRaises(InvalidPayoutTransitionError):
            self._processor(FakeTransfer()).request_retry(RetryRequested(winner_id, "ops"))
        with self.assertRaises(WinnerNotFoundError):
            self._processor(FakeTransfer()).send_payout(9999)

    def test_stuck_payout_resolution(self) -> None:
        raffle_id, (winner_id, *_) = self._seed_drawn_raffle()
        transfer = FakeTransfer()
        processor = self._processor(transfer)
        # Simulate a worker that claimed the winner and died before settling.
        processor._claim(winner_id)
        with self.assertRaises(PayoutInProgressError):
            processor.send_payout(winner_id)

        winner = processor.resolve_stuck_payout(winner_id, "ops", "no transfer found on-chain")
        self.assertEqual(winner.payout_status, "failed")
        with self.Session() as session:
            record = PayoutRecord.latest_for_winner(session, winner_id)
            self.assertEqual(record.status, "failed")
            self.assertIn("no transfer found", record.failure_reason)
            self.assertEqual(
                len(AuditLog.list_for_raffle(session, raffle_id, action="PAYOUT_STUCK_RESOLVED")), 1
            )

        paid = processor.retry(RetryRequested(winner_id, "ops"))
        self.assertEqual(paid.attempt, 2)
        self.assertEqual(len(transfer.calls), 1)

        with self.assertRaises(PayoutAlreadyProcessedError):
            processor.resolve_stuck_payout(winner_id, "ops", "again")

    def test_batch_isolates_failures(self) -> None:
        raffle_id, winner_ids = self._seed_drawn_raffle()
        transfer = FakeTransfer(
            {
                WALLETS[1]: TransferResult(success=False, error="recipient blocked"),
                WALLETS[2]: RuntimeError("connection reset"),
            }
        )
        batch = self._processor(transfer).send_all_payouts(raffle_id)

        self.assertEqual([o.winner_id for o in batch.outcomes], winner_ids)
        self.assertEqual([o.winner_id for o in batch.paid], [winner_ids[0]])
        self.assertEqual([o.winner_id for o in batch.failed], winner_ids[1:])
        self.assertEqual(batch.errors, [])

        with self.Session() as session:
            summary = get_payout_summary(session, raffle_id)
        self.assertEqual(summary.winners, 3)
        self.assertEqual(summary.counts, {"pending": 0, "processing": 0, "paid": 1, "failed": 2})
        self.assertEqual(summary.total_amount, 1000)
        self.assertEqual(summary.paid_amount, 500)
        self.assertEqual(summary.outstanding_amount, 500)

        # Only pending winners are picked up by a second batch.
        again = self._processor(transfer).send_all_payouts(raffle_id)
        self.assertEqual(again.outcomes, [])
        self.assertEqual(len(transfer.calls), 3)

    def test_batch_requires_draw(self) -> None:
        raffle_id, _ = self._seed_drawn_raffle(drawn=False)
        with self.assertRaises(DrawResultNotFoundError):
            self._processor(FakeTransfer()).send_all_payouts(raffle_id)

    def test_summary_before_payouts(self) -> None:
        raffle_id, _ = self._seed_drawn_raffle(amounts=(700, 300))
        with self.Session() as session:
            summary = get_payout_summary(session, raffle_id)
        self.assertEqual(summary.counts["pending"], 2)
        self.assertEqual(summary.paid_amount, 0)
        self.assertEqual(summary.outstanding_amount, 1000)


if __name__ == "__main__":
    unittest.main()
