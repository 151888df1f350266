import logging
from typing import Any, Mapping, Optional
from urllib.parse import urljoin

import requests

from ..config import get_settings
from ..errors import TransferServiceError
from .base import TransferResult
from .utils import get_jwt_token, open_session

logger = logging.getLogger(__name__)


class TransferClient:
    """REST client of the custody service that executes token transfers.

    The service holds the platform's signing keys; this client only submits
    a transfer and reports the outcome. Each submission is bounded by
    ``timeout`` seconds.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ):
        settings = get_settings()
        url = base_url or settings.transfer_service_url
        if not url:
            raise ValueError("Environment variable 'TRANSFER_SERVICE_URL' is not set")

        self.base_url = url.rstrip("/")
        self.timeout = timeout if timeout is not None else settings.transfer_timeout
        self.session = session or open_session()
        self.jwt = get_jwt_token(
            self.session,
            self.base_url,
            username or settings.transfer_service_username,
            password or settings.transfer_service_password,
            timeout=self.timeout,
        )

    # -------- headers --------
    @property
    def auth_headers(self) -> Mapping[str, str]:
        return {"Accept": "application/json", "Authorization": f"Bearer {self.jwt}"}

    # -------- core request --------
    def _request(self, method: str, path: str, *, json: Optional[dict] = None) -> Any:
        url = urljoin(self.base_url + "/", path.lstrip("/"))
        r = self.session.request(
            method=method.upper(),
            url=url,
            headers=self.auth_headers,
            json=json,
            timeout=self.timeout,
        )
        r.raise_for_status()
        return r.json() if r.content else None

    # -------- API callers --------
    def send(
        self, wallet_address: str, amount: int, reference: Optional[str] = None
    ) -> TransferResult:
        """Transfer ``amount`` minor units of the settlement token to ``wallet_address``.

        Parameters
        ----------
        wallet_address : str
            Recipient address.
        amount : int
            Amount in integer minor units.
        reference : Optional[str]
            Idempotency reference forwarded to the service.

        Returns
        -------
        TransferResult
            ``success=False`` with ``error`` when the service rejected the transfer.

        Raises
        ------
        TransferServiceError
            If the service cannot be reached within ``timeout`` or answers
            with a malformed payload.
        """
        payload = {"to": wallet_address, "amount": str(amount)}
        if reference is not None:
            payload["reference"] = reference
        try:
            response = self._request("POST", "/api/v1/transfers", json=payload)
        except requests.Timeout as e:
            raise TransferServiceError(f"Transfer timed out after {self.timeout}s") from e
        except requests.RequestException as e:
            raise TransferServiceError(f"Transfer request failed: {e}") from e

        if not isinstance(response, dict):
            raise TransferServiceError(f"Unexpected transfer response: {response!r}")

        if response.get("status") != "success":
            message = response.get("message") or "transfer rejected"
            logger.warning(f"Transfer to {wallet_address} rejected: {message}")
            return TransferResult(success=False, error=message)

        tx_id = response.get("transaction_id") or response.get("tx_hash")
        if not tx_id:
            raise TransferServiceError("Transfer response did not include a transaction id")
        return TransferResult(success=True, transaction_id=tx_id)
