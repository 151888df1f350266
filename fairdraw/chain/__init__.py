"""External chain collaborators: JSON-RPC reads and transfer execution."""

from .base import BlockRef, ChainReader, TransferExecutor, TransferResult
from .api import ChainClient
from .transfer import TransferClient

__all__ = [
    "BlockRef",
    "ChainClient",
    "ChainReader",
    "TransferClient",
    "TransferExecutor",
    "TransferResult",
]
