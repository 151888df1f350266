import logging
from typing import Optional
from urllib.parse import urljoin

import requests

logger = logging.getLogger(__name__)


def open_session() -> requests.Session:
    """Open a requests session with JSON defaults for the chain services.

    Returns
    -------
    requests.Session
        A session sending ``Accept: application/json`` on every request.
    """
    session = requests.Session()
    session.headers.update({"Accept": "application/json"})
    return session


def get_jwt_token(
    session: requests.Session,
    base_url: str,
    username: Optional[str],
    password: Optional[str],
    timeout: float = 30.0,
) -> str:
    """Obtain a JWT access token from the transfer service.

    Parameters
    ----------
    session : requests.Session
        A live session for the transfer service.
    base_url : str
        Base URL of the service, e.g. ``https://custody.example.com``.
    username, password : Optional[str]
        Service credentials.
    timeout : float, default: 30.0
        Request timeout in seconds.

    Returns
    -------
    str
        The JWT access token string.

    Raises
    ------
    RuntimeError
        If the credentials are not configured.
    requests.HTTPError
        If the login request fails.
    KeyError, ValueError
        If the response payload does not include an ``"access"`` field or is malformed.
    """
    if not username or not password:
        raise RuntimeError(
            "Environment variables 'TRANSFER_SERVICE_USERNAME' and "
            "'TRANSFER_SERVICE_PASSWORD' must be set"
        )
    # Never log raw credentials
    logger.debug("Attempting JWT login with configured service username")

    url = urljoin(base_url.rstrip("/") + "/", "api/v1/auth/jwt-token")
    response = session.post(
        url, json={"username": username, "password": password}, timeout=timeout
    )
    response.raise_for_status()

    # Avoid logging headers/body/response as they may contain sensitive data
    logger.debug("JWT token response received (content redacted)")

    return response.json()["access"]


def strip_hex_prefix(value: str) -> str:
    return value[2:] if value[:2].lower() == "0x" else value


def parse_hex_int(value) -> int:
    """Parse a JSON-RPC quantity (``"0x1b4"``) or pass through an int."""
    if isinstance(value, int):
        return value
    return int(strip_hex_prefix(str(value)) or "0", 16)
