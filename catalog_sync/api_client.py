"""Client for the remote catalog API.

All mutable client state (bearer token, expiry, current client identity)
lives in an ``ApiSession`` that is passed around explicitly. The token is
fetched lazily, cached for its lifetime and refreshed on the first 401.
"""

import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence, Tuple
from urllib.parse import quote

import requests  # type: ignore[import-untyped]

from catalog_sync.config import (
    API_BASE_URL,
    API_PASSWORD,
    API_TIMEOUT,
    API_USERNAME,
    AUTH_PATH,
    PRODUCT_PATH,
    STATISTICS_PATH,
    TOKEN_TTL_SECONDS,
    USER_AGENTS,
)
from catalog_sync.logging_config import get_logger, log_sync_event, mask_token
from catalog_sync.transfer import MultipartFile

__all__ = [
    "ApiClient",
    "ApiSession",
    "ApiError",
    "AuthenticationError",
    "FormFields",
]

logger = get_logger("api")

FormFields = List[Tuple[str, str]]


class AuthenticationError(Exception):
    """Raised when no bearer token can be obtained."""
    pass


class ApiError(Exception):
    """Raised for unexpected API responses outside the upload path."""

    def __init__(self, status_code: int, payload: Any = None):
        self.status_code = status_code
        self.payload = payload
        super().__init__(f"API returned HTTP {status_code}: {payload}")


@dataclass
class ApiSession:
    """Credential and client identity shared by every API call.

    Token refresh happens under ``lock``. The pipeline is sequential, so the
    lock is uncontended in practice.
    """

    token: Optional[str] = None
    expires_at: Optional[datetime] = None
    user_agents: List[str] = field(default_factory=lambda: list(USER_AGENTS))
    agent_index: int = 0
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False)

    def token_valid(self, now: Optional[datetime] = None) -> bool:
        if not self.token or not self.expires_at:
            return False
        return (now or datetime.now()) < self.expires_at

    def store_token(self, token: str, ttl_seconds: float, now: Optional[datetime] = None) -> None:
        self.token = token
        self.expires_at = (now or datetime.now()) + timedelta(seconds=ttl_seconds)

    def invalidate(self) -> None:
        self.token = None
        self.expires_at = None

    @property
    def user_agent(self) -> str:
        return self.user_agents[self.agent_index % len(self.user_agents)]

    def rotate_user_agent(self) -> str:
        """Switch to the next client identity and return it."""
        self.agent_index = (self.agent_index + 1) % len(self.user_agents)
        logger.info(f"Rotated client identity to #{self.agent_index}")
        return self.user_agent


def _rewind(files: Optional[Sequence[MultipartFile]]) -> None:
    for _, (_, handle, _) in files or []:
        handle.seek(0)


class ApiClient:
    """Thin wrapper around the REST surface the upload pipeline needs."""

    def __init__(
        self,
        base_url: str = API_BASE_URL,
        username: Optional[str] = API_USERNAME,
        password: Optional[str] = API_PASSWORD,
        timeout: float = API_TIMEOUT,
        session: Optional[ApiSession] = None,
        http: Optional[requests.Session] = None,
        token_ttl: float = TOKEN_TTL_SECONDS,
    ):
        self.base_url = base_url.rstrip("/")
        self.username = username
        self.password = password
        self.timeout = timeout
        self.session = session or ApiSession()
        self.http = http or requests.Session()
        self.token_ttl = token_ttl

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    def authenticate(self, force: bool = False) -> str:
        """Return a valid bearer token, logging in if needed.

        Args:
            force: Discard the cached token and log in again

        Raises:
            AuthenticationError: If credentials are missing or rejected
        """
        with self.session.lock:
            if not force and self.session.token_valid():
                return self.session.token  # type: ignore[return-value]

            if not self.username or not self.password:
                raise AuthenticationError(
                    "API credentials not configured. "
                    "Set CATALOG_API_USERNAME and CATALOG_API_PASSWORD in .env"
                )

            logger.info("Authenticating against the catalog API...")
            try:
                resp = self.http.post(
                    self._url(AUTH_PATH),
                    json={"username": self.username, "password": self.password},
                    headers={"User-Agent": self.session.user_agent, "Accept": "application/json"},
                    timeout=self.timeout,
                )
            except requests.exceptions.RequestException as e:
                raise AuthenticationError(f"Authentication request failed: {e}") from e

            if not resp.ok:
                raise AuthenticationError(f"Authentication rejected: HTTP {resp.status_code}")

            try:
                body = resp.json()
            except ValueError as e:
                raise AuthenticationError("Authentication response is not JSON") from e

            token = body.get("token") if isinstance(body, dict) else None
            if not token:
                raise AuthenticationError("No token in authentication response")

            ttl = body.get("expires_in") or self.token_ttl
            self.session.store_token(token, float(ttl))
            logger.info(f"Token obtained: {mask_token(token)} (expires {self.session.expires_at:%Y-%m-%d %H:%M})")
            return token

    def _send(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        data: Optional[FormFields] = None,
        files: Optional[Sequence[MultipartFile]] = None,
        timeout: Optional[float] = None,
    ) -> requests.Response:
        headers = {
            "Authorization": f"Bearer {self.session.token}",
            "User-Agent": self.session.user_agent,
            "Accept": "application/json",
        }
        return self.http.request(
            method,
            self._url(path),
            params=params,
            data=data,
            files=list(files) if files else None,
            headers=headers,
            timeout=timeout or self.timeout,
        )

    def request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        data: Optional[FormFields] = None,
        files: Optional[Sequence[MultipartFile]] = None,
        timeout: Optional[float] = None,
    ) -> requests.Response:
        """Send an authenticated request.

        A 401 forces one re-authentication and one retry of the same request;
        the response of that retry is returned whatever its status. Network
        errors from ``requests`` propagate.
        """
        self.authenticate()
        resp = self._send(method, path, params, data, files, timeout)

        if resp.status_code == 401:
            logger.warning("Token rejected (401), re-authenticating")
            log_sync_event("auth_refresh", {"method": method, "path": path})
            self.session.invalidate()
            self.authenticate(force=True)
            _rewind(files)
            resp = self._send(method, path, params, data, files, timeout)

        return resp

    def get_product(self, reference: str) -> requests.Response:
        return self.request("GET", f"{PRODUCT_PATH}/{quote(reference, safe='')}")

    def create_product(self, data: FormFields, files: Sequence[MultipartFile]) -> requests.Response:
        return self.request("POST", PRODUCT_PATH, data=data, files=files)

    def update_product(
        self, remote_id: str, data: FormFields, files: Sequence[MultipartFile]
    ) -> requests.Response:
        return self.request("PUT", f"{PRODUCT_PATH}/{quote(str(remote_id), safe='')}", data=data, files=files)

    def get_statistics(self, kind: str = "general", period: str = "7days") -> Dict[str, Any]:
        """Fetch the diagnostics payload.

        Raises:
            ApiError: On a non-2xx response
        """
        resp = self.request("GET", STATISTICS_PATH, params={"type": kind, "period": period})
        if not resp.ok:
            raise ApiError(resp.status_code, resp.text[:500])
        return resp.json()

    def test_connection(self) -> Dict[str, Any]:
        """Connectivity self-test: log in and read the statistics endpoint."""
        logger.info("Testing API connectivity...")
        try:
            self.authenticate(force=True)
            stats = self.get_statistics()
        except (AuthenticationError, ApiError, requests.exceptions.RequestException, ValueError) as e:
            logger.error(f"API connection failed: {e}")
            return {"success": False, "error": str(e)}

        logger.info("API connection established")
        return {
            "success": True,
            "token": mask_token(self.session.token),
            "expires": self.session.expires_at.isoformat() if self.session.expires_at else None,
            "stats": stats,
        }
