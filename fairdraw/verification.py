"""Read-only verification: draw re-computation and inbound transfer checks."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from .cache import TTLCache
from .chain.base import ChainReader
from .chain.utils import parse_hex_int
from .config import get_settings
from .draw.engine import compute_winners
from .errors import (
    DrawResultNotFoundError,
    DuplicateTransactionError,
    InvalidTransactionError,
    RaffleError,
    RaffleNotFoundError,
)
from .models import DrawResult, Entry, Raffle, Winner
from .validation import normalize_tx_hash, normalize_wallet

logger = logging.getLogger(__name__)

# keccak256("transfer(address,uint256)")[:4]
ERC20_TRANSFER_SELECTOR = "a9059cbb"


def verify_draw(session: Session, raffle_id: int) -> bool:
    """Recompute a stored draw and compare it with the persisted winners.

    The pool is rebuilt from the raffle's non-refunded entries and winners
    are re-selected from the stored seed and net prize pool. Every stored
    winner must match the recomputed one at the same position on wallet,
    ticket index and amount.

    Returns
    -------
    bool
        ``True`` when the stored winners are exactly reproduced.

    Raises
    ------
    RaffleNotFoundError
        If the raffle does not exist.
    DrawResultNotFoundError
        If the raffle has no stored draw result.
    """
    raffle = Raffle.get_by_id(session, raffle_id)
    if raffle is None:
        raise RaffleNotFoundError(raffle_id)
    result = DrawResult.get_by_raffle_id(session, raffle_id)
    if result is None:
        raise DrawResultNotFoundError(raffle_id)

    entries = Entry.list_for_raffle(session, raffle_id)
    try:
        pool, expected = compute_winners(raffle, entries, result.seed, prize_pool=result.prize_pool)
    except RaffleError as exc:
        logger.warning(f"Draw of raffle {raffle_id} cannot be recomputed: {exc}")
        return False

    stored = Winner.list_for_raffle(session, raffle_id)
    if len(pool) != result.total_tickets:
        logger.warning(
            f"Raffle {raffle_id} pool has {len(pool)} tickets, draw recorded {result.total_tickets}"
        )
        return False
    if len(stored) != len(expected):
        logger.warning(
            f"Raffle {raffle_id} stores {len(stored)} winners, recomputation gives {len(expected)}"
        )
        return False
    for row, want in zip(stored, expected):
        if (
            row.position != want.position
            or row.wallet_address.lower() != want.wallet_address.lower()
            or row.ticket_index != want.ticket_index
            or row.prize_amount != want.amount
        ):
            logger.warning(
                f"Raffle {raffle_id} winner #{row.position} mismatch: stored "
                f"({row.wallet_address}, {row.ticket_index}, {row.prize_amount}) vs recomputed "
                f"({want.wallet_address}, {want.ticket_index}, {want.amount})"
            )
            return False
    return True


@dataclass(frozen=True)
class VerifiedTransfer:
    """Facts established about an inbound settlement-token transfer."""

    tx_hash: str
    sender: str
    recipient: str
    amount: int
    block_number: Optional[int]


class TransferVerifier:
    """Validates inbound ERC-20 transfers before entries are recorded.

    A transaction hash is claimed in a TTL cache while it is verified so two
    concurrent requests cannot both pass the uniqueness check; the
    ``raffle_entries.transaction_hash`` unique constraint remains the final
    guard once the entry is inserted.

    Parameters
    ----------
    chain : ChainReader
        Source of transactions and receipts.
    token_contract : Optional[str]
        Settlement token contract; defaults to ``TOKEN_CONTRACT_ADDRESS``.
    platform_wallet : Optional[str]
        Receiving address; defaults to ``PLATFORM_WALLET_ADDRESS``.
    claims : Optional[TTLCache]
        Cache of in-flight hashes; defaults to one with
        ``TX_CLAIM_TTL_SECONDS`` lifetime.
    """

    def __init__(
        self,
        chain: ChainReader,
        token_contract: Optional[str] = None,
        platform_wallet: Optional[str] = None,
        claims: Optional[TTLCache] = None,
    ) -> None:
        settings = get_settings()
        token = token_contract or settings.token_contract_address
        wallet = platform_wallet or settings.platform_wallet_address
        if not token:
            raise ValueError("Environment variable 'TOKEN_CONTRACT_ADDRESS' is not set")
        if not wallet:
            raise ValueError("Environment variable 'PLATFORM_WALLET_ADDRESS' is not set")
        self._chain = chain
        self.token_contract = normalize_wallet(token, "token_contract")
        self.platform_wallet = normalize_wallet(wallet, "platform_wallet")
        self._claims = claims if claims is not None else TTLCache(ttl=settings.tx_claim_ttl)

    def release(self, tx_hash: str) -> None:
        self._claims.pop(tx_hash.lower())

    def verify(
        self,
        session: Session,
        tx_hash: str,
        expected_sender: str,
        expected_amount: int,
        expected_recipient: Optional[str] = None,
    ) -> VerifiedTransfer:
        """Verify ``tx_hash`` paid ``expected_amount`` from ``expected_sender``.

        On success the hash stays claimed until its TTL expires; on any
        failure the claim is released.

        Raises
        ------
        ValidationError
            If the hash or an address is malformed.
        DuplicateTransactionError
            If the hash is used by an entry or is being verified elsewhere.
        InvalidTransactionError
            If the transaction is missing, reverted, not a token transfer to
            the recipient, or carries the wrong amount or sender.
        ChainRequestError
            If the chain cannot be read.
        """
        tx_hash = normalize_tx_hash(tx_hash)
        sender = normalize_wallet(expected_sender, "expected_sender")
        recipient = (
            normalize_wallet(expected_recipient, "expected_recipient")
            if expected_recipient is not None
            else self.platform_wallet
        )

        if not self._claims.add(tx_hash):
            if tx_hash in self._claims:
                raise DuplicateTransactionError(tx_hash, "is already being processed")
            raise DuplicateTransactionError(
                tx_hash, "cannot be claimed while too many transfers are in flight"
            )
        try:
            if Entry.get_by_transaction_hash(session, tx_hash) is not None:
                raise DuplicateTransactionError(tx_hash)
            return self._check_on_chain(tx_hash, sender, expected_amount, recipient)
        except Exception:
            self.release(tx_hash)
            raise

    def _check_on_chain(
        self, tx_hash: str, sender: str, amount: int, recipient: str
    ) -> VerifiedTransfer:
        receipt = self._chain.get_transaction_receipt(tx_hash)
        if not receipt:
            raise InvalidTransactionError(tx_hash, "transaction not found or not yet mined")
        if parse_hex_int(receipt.get("status", "0x0")) != 1:
            raise InvalidTransactionError(tx_hash, "transaction failed on-chain")

        tx = self._chain.get_transaction(tx_hash)
        if not tx:
            raise InvalidTransactionError(tx_hash, "transaction not found")

        if (tx.get("to") or "").lower() != self.token_contract:
            raise InvalidTransactionError(tx_hash, "not a transfer of the settlement token")

        data = (tx.get("input") or tx.get("data") or "").lower()
        if not data.startswith("0x" + ERC20_TRANSFER_SELECTOR):
            raise InvalidTransactionError(tx_hash, "not an ERC-20 transfer call")
        if len(data) < 138:
            raise InvalidTransactionError(tx_hash, "malformed transfer call data")

        # Arguments are 32-byte words; an address is the low 20 bytes of its word.
        to_address = "0x" + data[34:74]
        try:
            value = int(data[74:138], 16)
        except ValueError as exc:
            raise InvalidTransactionError(tx_hash, "malformed transfer amount") from exc

        if to_address != recipient:
            raise InvalidTransactionError(
                tx_hash, f"recipient {to_address} is not the platform wallet"
            )
        if value != amount:
            raise InvalidTransactionError(
                tx_hash, f"amount {value} does not match expected {amount}"
            )
        tx_from = (tx.get("from") or "").lower()
        if tx_from != sender:
            raise InvalidTransactionError(
                tx_hash, f"sender {tx_from} does not match {sender}"
            )

        block = receipt.get("blockNumber")
        return VerifiedTransfer(
            tx_hash=tx_hash,
            sender=tx_from,
            recipient=to_address,
            amount=value,
            block_number=parse_hex_int(block) if block is not None else None,
        )
