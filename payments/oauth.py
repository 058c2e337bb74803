import threading
from datetime import datetime, timedelta
from typing import Optional

import requests
import structlog

from core.logging import PayPalEvents
from core.metrics import paypal_requests
from payments.errors import GatewayDeclined, GatewayUnreachable
from payments.gateway import Clock, utcnow

log = structlog.get_logger(__name__)


class TokenCache:
    """OAuth2 client-credentials token for the REST API.

    The token is cached with its absolute expiry. Refresh is serialised, so
    concurrent callers hitting an expired token trigger a single request.
    """

    def __init__(
        self,
        api_url: str,
        client_id: str,
        client_secret: str,
        http: Optional[requests.Session] = None,
        timeout: float = 30.0,
        clock: Optional[Clock] = None,
    ):
        self.api_url = api_url
        self.client_id = client_id
        self.client_secret = client_secret
        self.http = http or requests.Session()
        self.timeout = timeout
        self.clock = clock or utcnow
        self._cache: tuple[str, datetime] | None = None
        self._lock = threading.Lock()

    def _valid(self) -> Optional[str]:
        cached = self._cache
        if cached and cached[1] > self.clock():
            return cached[0]
        return None

    def get_access_token(self) -> str:
        token = self._valid()
        if token:
            return token
        with self._lock:
            # Another thread may have refreshed while we waited.
            token = self._valid()
            if token:
                return token
            token, expires_at = self._fetch()
            self._cache = (token, expires_at)
            return token

    def invalidate(self) -> None:
        self._cache = None

    def _fetch(self) -> tuple[str, datetime]:
        paypal_requests.labels(protocol="oauth", method="token").inc()
        try:
            r = self.http.request(
                "POST",
                f"{self.api_url}/oauth2/token",
                auth=(self.client_id, self.client_secret),
                headers={"Accept": "application/json"},
                data={"grant_type": "client_credentials"},
                timeout=self.timeout,
            )
        except (requests.Timeout, requests.ConnectionError) as e:
            log.error(PayPalEvents.REQUEST_FAILED, protocol="oauth", error=str(e))
            raise GatewayUnreachable(f"PayPal token request failed: {e}") from e

        try:
            data = r.json()
        except ValueError:
            data = {}
        if r.status_code != 200 or not data.get("access_token"):
            raise GatewayDeclined(
                data.get("error_description") or f"Token request failed: {r.status_code}",
                data.get("error"),
            )

        expires_at = self.clock() + timedelta(seconds=int(data.get("expires_in", 0)))
        log.info(PayPalEvents.TOKEN_ACQUIRED, expires_at=expires_at.isoformat())
        return data["access_token"], expires_at
