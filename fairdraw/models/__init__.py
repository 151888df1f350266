from .base import Base

# import models so Alembic/autoloaders can discover mappers
from .raffle import Raffle, RAFFLE_STATUSES, RAFFLE_TYPES, SEED_MODES  # noqa: F401
from .entry import Entry  # noqa: F401
from .result import DrawResult, Winner, PAYOUT_STATUSES  # noqa: F401
from .payout import PayoutRecord  # noqa: F401
from .audit import AuditLog  # noqa: F401

__all__ = [
    "Base",
    "Raffle",
    "Entry",
    "DrawResult",
    "Winner",
    "PayoutRecord",
    "AuditLog",
    "RAFFLE_STATUSES",
    "RAFFLE_TYPES",
    "SEED_MODES",
    "PAYOUT_STATUSES",
]
