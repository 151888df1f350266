import unittest
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from fairdraw.cache import TTLCache
from fairdraw.errors import (
    ChainRequestError,
    DuplicateTransactionError,
    InvalidTransactionError,
    ValidationError,
)
from fairdraw.models import Base, Entry, Raffle
from fairdraw.verification import ERC20_TRANSFER_SELECTOR, TransferVerifier

TOKEN = "0x" + "70" * 20
PLATFORM = "0x" + "9f" * 20
BUYER = "0x" + "b1" * 20
TX = "0x" + "ee" * 32


def transfer_input(recipient: str, amount: int) -> str:
    return "0x" + ERC20_TRANSFER_SELECTOR + recipient[2:].rjust(64, "0") + f"{amount:064x}"


class DummyChain:
    def __init__(self):
        self.receipts = {}
        self.transactions = {}
        self.error = None

    def put(self, tx_hash, *, sender=BUYER, to=TOKEN, recipient=PLATFORM, amount=3_000_000, status="0x1"):
        self.receipts[tx_hash] = {"status": status, "blockNumber": "0x2a"}
        self.transactions[tx_hash] = {
            "from": sender.upper().replace("0X", "0x"),
            "to": to,
            "input": transfer_input(recipient, amount),
        }

    def latest_block(self):
        raise NotImplementedError

    def get_transaction(self, tx_hash):
        return self.transactions.get(tx_hash)

    def get_transaction_receipt(self, tx_hash):
        if self.error is not None:
            raise self.error
        return self.receipts.get(tx_hash)


class TransferVerifierTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = create_engine("sqlite+pysqlite:///:memory:", future=True)
        Base.metadata.create_all(self.engine)
        self.Session = sessionmaker(bind=self.engine, future=True, expire_on_commit=False)
        self.chain = DummyChain()
        self.verifier = TransferVerifier(
            self.chain, token_contract=TOKEN, platform_wallet=PLATFORM, claims=TTLCache(ttl=60)
        )

    def tearDown(self) -> None:
        self.engine.dispose()

    def test_valid_transfer(self) -> None:
        self.chain.put(TX)
        with self.Session() as session:
            verified = self.verifier.verify(session, TX.upper().replace("0X", "0x"), BUYER, 3_000_000)
        self.assertEqual(verified.tx_hash, TX)
        self.assertEqual(verified.sender, BUYER)
        self.assertEqual(verified.recipient, PLATFORM)
        self.assertEqual(verified.amount, 3_000_000)
        self.assertEqual(verified.block_number, 42)

    def test_rejections(self) -> None:
        cases = {
            "amount": dict(amount=2_999_999),
            "recipient": dict(recipient="0x" + "01" * 20),
            "sender": dict(sender="0x" + "02" * 20),
            "settlement token": dict(to="0x" + "03" * 20),
            "failed on-chain": dict(status="0x0"),
        }
        for i, (reason, overrides) in enumerate(cases.items()):
            tx_hash = "0x" + f"{i:064x}"
            self.chain.put(tx_hash, **overrides)
            with self.Session() as session:
                with self.assertRaises(InvalidTransactionError) as ctx:
                    self.verifier.verify(session, tx_hash, BUYER, 3_000_000)
            self.assertIn(reason, str(ctx.exception))

    def test_unmined_and_non_transfer_calls(self) -> None:
        with self.Session() as session:
            with self.assertRaises(InvalidTransactionError):
                self.verifier.verify(session, TX, BUYER, 3_000_000)
            self.chain.put(TX)
            self.chain.transactions[TX]["input"] = "0x095ea7b3" + "00" * 64
            with self.assertRaises(InvalidTransactionError) as ctx:
                self.verifier.verify(session, TX, BUYER, 3_000_000)
            self.assertIn("not an ERC-20 transfer", str(ctx.exception))
            self.chain.transactions[TX]["input"] = "0x" + ERC20_TRANSFER_SELECTOR + "00" * 10
            with self.assertRaises(InvalidTransactionError):
                self.verifier.verify(session, TX, BUYER, 3_000_000)

    def test_malformed_inputs(self) -> None:
        with self.Session() as session:
            with self.assertRaises(ValidationError):
                self.verifier.verify(session, "0x1234", BUYER, 1)
            with self.assertRaises(ValidationError):
                self.verifier.verify(session, TX, "not-a-wallet", 1)

    def test_hash_used_by_entry(self) -> None:
        self.chain.put(TX)
        with self.Session.begin() as session:
            start = datetime(2026, 1, 1, tzinfo=timezone.utc)
            raffle = Raffle(
                raffle_type="daily",
                title="Dup",
                entry_price=1_000_000,
                start_time=start,
                end_time=start + timedelta(days=1),
                winner_count=1,
            )
            session.add(raffle)
            session.flush()
            session.add(
                Entry(raffle_id=raffle.id, wallet_address=BUYER, units=3, amount_paid=3_000_000, transaction_hash=TX)
            )
        with self.Session() as session:
            with self.assertRaises(DuplicateTransactionError):
                self.verifier.verify(session, TX, BUYER, 3_000_000)
        # The failed attempt released its claim.
        self.assertNotIn(TX, self.verifier._claims)

    def test_hash_is_claimed_while_in_flight(self) -> None:
        self.chain.put(TX)
        with self.Session() as session:
            self.verifier.verify(session, TX, BUYER, 3_000_000)
            with self.assertRaises(DuplicateTransactionError) as ctx:
                self.verifier.verify(session, TX, BUYER, 3_000_000)
        self.assertIn("already being processed", str(ctx.exception))

        self.verifier.release(TX)
        with self.Session() as session:
            self.verifier.verify(session, TX, BUYER, 3_000_000)

    def test_full_claim_cache_refuses_instead_of_evicting(self) -> None:
        verifier = TransferVerifier(
            self.chain, token_contract=TOKEN, platform_wallet=PLATFORM, claims=TTLCache(ttl=60, maxsize=1)
        )
        other = "0x" + "ef" * 32
        self.chain.put(TX)
        self.chain.put(other)
        with self.Session() as session:
            verifier.verify(session, TX, BUYER, 3_000_000)
            with self.assertRaises(DuplicateTransactionError) as ctx:
                verifier.verify(session, other, BUYER, 3_000_000)
            self.assertIn("in flight", str(ctx.exception))
            # The first claim survived, so its hash is still refused.
            with self.assertRaises(DuplicateTransactionError):
                verifier.verify(session, TX, BUYER, 3_000_000)

    def test_failure_releases_claim(self) -> None:
        self.chain.put(TX, amount=1)
        with self.Session() as session:
            with self.assertRaises(InvalidTransactionError):
                self.verifier.verify(session, TX, BUYER, 3_000_000)
            self.chain.put(TX)
            self.verifier.verify(session, TX, BUYER, 3_000_000)

    def test_chain_error_propagates_and_releases(self) -> None:
        self.chain.error = ChainRequestError("eth_getTransactionReceipt", "timed out after 15.0s")
        with self.Session() as session:
            with self.assertRaises(ChainRequestError):
                self.verifier.verify(session, TX, BUYER, 3_000_000)
        self.assertNotIn(TX, self.verifier._claims)

    @patch("fairdraw.verification.get_settings")
    def test_requires_token_configuration(self, mock_settings) -> None:
        mock_settings.return_value.token_contract_address = None
        with self.assertRaises(ValueError):
            TransferVerifier(self.chain, token_contract="", platform_wallet=PLATFORM)


if __name__ == "__main__":
    unittest.main()
