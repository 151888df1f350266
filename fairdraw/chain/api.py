import itertools
import logging
from typing import Any, Optional

import requests

from ..config import get_settings
from ..errors import ChainRequestError
from .base import BlockRef
from .utils import open_session, parse_hex_int

logger = logging.getLogger(__name__)


class ChainClient:
    """Minimal Ethereum JSON-RPC client for the reads the engine needs.

    Every request is bounded by ``timeout`` seconds; transport errors and
    RPC error payloads surface as :class:`~fairdraw.errors.ChainRequestError`.
    """

    def __init__(
        self,
        rpc_url: Optional[str] = None,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
        finality_tag: str = "finalized",
    ):
        settings = get_settings()
        url = rpc_url or settings.chain_rpc_url
        if not url:
            raise ValueError("Environment variable 'CHAIN_RPC_URL' is not set")

        self.rpc_url = url
        self.timeout = timeout if timeout is not None else settings.chain_timeout
        self.session = session or open_session()
        self.finality_tag = finality_tag
        self._ids = itertools.count(1)

    # -------- core request --------
    def _rpc(self, method: str, params: list) -> Any:
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params,
        }
        try:
            r = self.session.post(self.rpc_url, json=payload, timeout=self.timeout)
            r.raise_for_status()
            body = r.json()
        except requests.Timeout as e:
            raise ChainRequestError(method, f"timed out after {self.timeout}s") from e
        except (requests.RequestException, ValueError) as e:
            raise ChainRequestError(method, str(e)) from e

        if not isinstance(body, dict):
            raise ChainRequestError(method, f"unexpected response {body!r}")
        error = body.get("error")
        if error:
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise ChainRequestError(method, message or "unknown RPC error")
        return body.get("result")

    # -------- API callers --------
    def latest_block(self) -> BlockRef:
        """Return the latest block at the configured finality tag."""
        block = self._rpc("eth_getBlockByNumber", [self.finality_tag, False])
        if not block:
            raise ChainRequestError("eth_getBlockByNumber", f"no {self.finality_tag} block")
        try:
            ref = BlockRef(number=parse_hex_int(block["number"]), hash=str(block["hash"]))
        except (KeyError, TypeError, ValueError) as e:
            raise ChainRequestError("eth_getBlockByNumber", f"malformed block: {e}") from e
        logger.debug(f"Fetched {self.finality_tag} block {ref.number}")
        return ref

    def get_transaction(self, tx_hash: str) -> Optional[dict]:
        return self._rpc("eth_getTransactionByHash", [tx_hash])

    def get_transaction_receipt(self, tx_hash: str) -> Optional[dict]:
        return self._rpc("eth_getTransactionReceipt", [tx_hash])
