"""
Ekart bearer token cache.

POST <auth-url> with Basic credentials and the merchant-code header; the token may come
back in the body (Authorization / authorization / token) or in the Authorization header.
Tokens are kept for EKART_TOKEN_TTL_SEC (55 min, under the 60 min upstream lifetime).
"""
import logging
import time
from typing import Callable, Optional

import httpx

from app.services.ekart_errors import AuthError
from app.services.http_client import post_no_retry, response_json

logger = logging.getLogger(__name__)

TOKEN_CACHE_TTL_SEC = 55 * 60
AUTH_TIMEOUT_SEC = 15.0


def _strip_scheme(value: str) -> Optional[str]:
    # "Bearer abc" -> "abc"
    parts = value.split()
    return parts[-1] if parts else None


def parse_token_from_auth_response(resp: httpx.Response) -> Optional[str]:
    """Extract the token from any of the response shapes Ekart is known to use."""
    body = response_json(resp)
    if isinstance(body, dict):
        if body.get("Authorization"):
            return _strip_scheme(str(body["Authorization"]))
        if body.get("authorization"):
            return _strip_scheme(str(body["authorization"]))
        if body.get("token"):
            return str(body["token"]).strip() or None
    header = resp.headers.get("authorization")
    if header:
        return _strip_scheme(header)
    return None


class EkartTokenCache:
    """
    Owns the Ekart credential for the lifetime of the application container.
    Concurrent refreshes are harmless (last writer wins), so no lock is taken.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        auth_url: str,
        merchant_code: str,
        basic_auth: str,
        *,
        ttl_sec: float = TOKEN_CACHE_TTL_SEC,
        timeout: float = AUTH_TIMEOUT_SEC,
        clock: Callable[[], float] = time.time,
    ):
        self.client = client
        self.auth_url = (auth_url or "").strip()
        self.merchant_code = merchant_code or ""
        self.basic_auth = basic_auth or ""
        self.ttl_sec = ttl_sec
        self.timeout = timeout
        self._clock = clock
        self._token: Optional[str] = None
        self._expires_at: float = 0.0

    @property
    def is_valid(self) -> bool:
        return bool(self._token) and self._clock() < self._expires_at

    def invalidate(self) -> None:
        self._token = None
        self._expires_at = 0.0

    async def get_token(self) -> str:
        if self.is_valid:
            return self._token  # type: ignore[return-value]
        if not self.auth_url:
            raise AuthError("Ekart auth URL is not configured")

        headers = {
            "Content-Type": "application/json",
            "HTTP_X_MERCHANT_CODE": self.merchant_code,
            "Authorization": f"Basic {self.basic_auth}",
        }
        # TransportError (timeout / network) propagates unchanged
        resp = await post_no_retry(self.client, self.auth_url, json={}, headers=headers, timeout=self.timeout)
        if resp.status_code >= 400:
            logger.warning("Ekart auth failed status=%s body=%s", resp.status_code, resp.text[:500])
            raise AuthError(
                f"Ekart auth failed with HTTP {resp.status_code}",
                details=response_json(resp),
            )

        token = parse_token_from_auth_response(resp)
        if not token:
            logger.warning("Ekart auth response carried no token (status=%s)", resp.status_code)
            raise AuthError("Token missing in Ekart auth response")

        self._token = token
        self._expires_at = self._clock() + self.ttl_sec
        logger.debug("Ekart token refreshed; valid for %ss", self.ttl_sec)
        return token
