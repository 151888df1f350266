"""Environment driven settings for the raffle engine."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv
from sqlalchemy.engine import make_url

from .db.utils import resolve_sqlite_url
from .models.raffle import SEED_MODES

# Project root directory (repo root)
ROOT_DIR = Path(__file__).resolve().parents[1]

__all__ = ["Settings", "get_settings"]


def _int_env(environ: Mapping[str, str], name: str, default: int, minimum: int = 0) -> int:
    raw = environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValueError(f"Environment variable '{name}' must be an integer, got {raw!r}") from exc
    if value < minimum:
        raise ValueError(f"Environment variable '{name}' must be >= {minimum}, got {value}")
    return value


def _float_env(environ: Mapping[str, str], name: str, default: float) -> float:
    raw = environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise ValueError(f"Environment variable '{name}' must be a number, got {raw!r}") from exc
    if value <= 0:
        raise ValueError(f"Environment variable '{name}' must be positive, got {value}")
    return value


@dataclass(frozen=True)
class Settings:
    """Runtime configuration loaded from the process environment.

    Attributes
    ----------
    db_url : str
        SQLAlchemy URL. Relative ``sqlite:///./`` URLs are resolved against
        the repository root.
    chain_rpc_url : Optional[str]
        JSON-RPC endpoint used for block and transaction reads.
    chain_id : int
        Chain identifier recorded alongside block-hash seeds.
    chain_timeout : float
        Per-request timeout, in seconds, for chain reads.
    token_contract_address : Optional[str]
        ERC-20 settlement token contract.
    platform_wallet_address : Optional[str]
        Address receiving entry payments.
    transfer_service_url : Optional[str]
        Base URL of the transfer-execution service.
    transfer_service_username, transfer_service_password : Optional[str]
        Credentials exchanged for a JWT by the transfer client.
    transfer_timeout : float
        Upper bound, in seconds, of a single transfer submission.
    default_seed_mode : str
        ``"block_hash"`` or ``"crypto"``; copied onto each new raffle.
    platform_fee_bps : int
        Default platform fee in basis points.
    payout_concurrency : int
        Worker count of the batch payout fan-out.
    payout_max_attempts : int
        Maximum number of transfer attempts per winner.
    tx_claim_ttl : float
        Lifetime, in seconds, of an in-flight transaction hash claim.
    """

    db_url: str = "sqlite:///./dev.db"
    chain_rpc_url: Optional[str] = None
    chain_id: int = 137
    chain_timeout: float = 15.0
    token_contract_address: Optional[str] = None
    platform_wallet_address: Optional[str] = None
    transfer_service_url: Optional[str] = None
    transfer_service_username: Optional[str] = None
    transfer_service_password: Optional[str] = None
    transfer_timeout: float = 60.0
    default_seed_mode: str = "block_hash"
    platform_fee_bps: int = 1000
    payout_concurrency: int = 4
    payout_max_attempts: int = 5
    tx_claim_ttl: float = 300.0

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """Build settings from ``environ`` (defaults to ``os.environ`` after ``.env``).

        Raises
        ------
        ValueError
            If a numeric variable does not parse or the seed mode is unknown.
        """
        if environ is None:
            load_dotenv()
            environ = os.environ

        seed_mode = environ.get("DEFAULT_SEED_MODE", "block_hash").strip() or "block_hash"
        if seed_mode not in SEED_MODES:
            raise ValueError(
                f"Environment variable 'DEFAULT_SEED_MODE' must be one of {SEED_MODES}, got {seed_mode!r}"
            )

        fee_bps = _int_env(environ, "PLATFORM_FEE_BPS", 1000)
        if fee_bps > 1000:
            raise ValueError(
                f"Environment variable 'PLATFORM_FEE_BPS' must be <= 1000, got {fee_bps}"
            )

        return cls(
            db_url=resolve_sqlite_url(environ.get("DB_URL", "sqlite:///./dev.db"), ROOT_DIR),
            chain_rpc_url=environ.get("CHAIN_RPC_URL") or None,
            chain_id=_int_env(environ, "CHAIN_ID", 137, minimum=1),
            chain_timeout=_float_env(environ, "CHAIN_TIMEOUT_SECONDS", 15.0),
            token_contract_address=environ.get("TOKEN_CONTRACT_ADDRESS") or None,
            platform_wallet_address=environ.get("PLATFORM_WALLET_ADDRESS") or None,
            transfer_service_url=environ.get("TRANSFER_SERVICE_URL") or None,
            transfer_service_username=environ.get("TRANSFER_SERVICE_USERNAME") or None,
            transfer_service_password=environ.get("TRANSFER_SERVICE_PASSWORD") or None,
            transfer_timeout=_float_env(environ, "TRANSFER_TIMEOUT_SECONDS", 60.0),
            default_seed_mode=seed_mode,
            platform_fee_bps=fee_bps,
            payout_concurrency=_int_env(environ, "PAYOUT_CONCURRENCY", 4, minimum=1),
            payout_max_attempts=_int_env(environ, "PAYOUT_MAX_ATTEMPTS", 5, minimum=1),
            tx_claim_ttl=_float_env(environ, "TX_CLAIM_TTL_SECONDS", 300.0),
        )

    @property
    def safe_db_url(self) -> str:
        """``db_url`` with any password masked, for logs."""
        return make_url(self.db_url).render_as_string(hide_password=True)

    def __repr__(self) -> str:
        # Never echo credentials.
        return (
            f"<Settings(db_url={self.safe_db_url}, chain_id={self.chain_id}, "
            f"default_seed_mode={self.default_seed_mode})>"
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the process wide settings, loading them on first use."""
    return Settings.from_env()
