"""
Ekart reverse-logistics API client.
- Create: POST <EKART_CREATE_URL> with the RETURNS_SMART_CHECK body; response {response: [{status, tracking_id, message?}]}
- Track: POST <EKART_BASE_URL>/v2/shipments/track with {request_id, tracking_ids}; response keyed by tracking ID
Every call carries the cached bearer token and the merchant-code header. Failures leave this
module only as ReturnError subclasses, never as raw httpx exceptions.
"""
import logging
import uuid
from typing import Any, Optional

import httpx

from app.config import settings
from app.services.ekart_errors import AuthError, TransportError, ValidationError, classify_http_failure
from app.services.ekart_token_cache import EkartTokenCache
from app.services.http_client import build_async_client, post_no_retry, response_json

logger = logging.getLogger(__name__)

TRACK_PATH = "/v2/shipments/track"


def get_ekart_service(transport: Optional[httpx.AsyncBaseTransport] = None) -> "EkartService":
    """Build an EkartService (and its token cache) from settings. Caller owns it and must aclose()."""
    client = build_async_client(timeout=settings.EKART_REQUEST_TIMEOUT_SEC, transport=transport)
    token_cache = EkartTokenCache(
        client,
        auth_url=settings.EKART_AUTH_URL,
        merchant_code=settings.MERCHANT_CODE,
        basic_auth=settings.BASIC_AUTH,
        ttl_sec=settings.EKART_TOKEN_TTL_SEC,
        timeout=settings.EKART_AUTH_TIMEOUT_SEC,
    )
    return EkartService(
        client,
        token_cache,
        create_url=settings.EKART_CREATE_URL,
        base_url=settings.EKART_BASE_URL,
        merchant_code=settings.MERCHANT_CODE,
        timeout=settings.EKART_REQUEST_TIMEOUT_SEC,
    )


class EkartService:
    """Thin Ekart client; interpretation of the responses lives in ekart_reconciliation."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        token_cache: EkartTokenCache,
        *,
        create_url: str,
        base_url: str,
        merchant_code: str = "",
        timeout: float = 30.0,
    ):
        self.client = client
        self.token_cache = token_cache
        self.create_url = (create_url or "").strip()
        self.base_url = (base_url or "").rstrip("/")
        self.merchant_code = merchant_code or ""
        self.timeout = timeout

    async def _headers(self) -> dict:
        token = await self.token_cache.get_token()
        return {
            "Content-Type": "application/json",
            "HTTP_X_MERCHANT_CODE": self.merchant_code,
            "Authorization": f"Bearer {token}",
        }

    async def _post(self, url: str, body: dict, *, action: str) -> Any:
        headers = await self._headers()
        resp = await post_no_retry(self.client, url, json=body, headers=headers, timeout=self.timeout)
        data = response_json(resp)
        if resp.status_code in (401, 403):
            # Token revoked or expired early; next call re-authenticates
            self.token_cache.invalidate()
            logger.warning("Ekart %s unauthorized status=%s", action, resp.status_code)
            raise AuthError(f"Ekart rejected the credential (HTTP {resp.status_code})", details=data)
        if resp.status_code >= 400:
            logger.warning("Ekart %s failed status=%s body=%s", action, resp.status_code, resp.text[:1000])
            raise classify_http_failure(resp.status_code, data)
        if data is None:
            raise TransportError(f"Ekart {action} returned an empty or non-JSON body")
        logger.debug("Ekart %s status=%s", action, resp.status_code)
        return data

    async def create_shipment(self, payload: dict) -> dict:
        """POST the create body; returns the raw JSON response for reconciliation."""
        if not self.create_url:
            raise TransportError("Ekart create URL is not configured")
        data = await self._post(self.create_url, payload, action="create")
        if not isinstance(data, dict):
            raise TransportError("Ekart create returned an unexpected response shape", details=data)
        return data

    async def track(self, tracking_ids: list[str]) -> Any:
        """POST /v2/shipments/track for one or more tracking IDs; returns the raw payload."""
        ids = [str(t).strip() for t in tracking_ids or [] if str(t).strip()]
        if not ids:
            raise ValidationError("At least one tracking ID is required")
        if not self.base_url:
            raise TransportError("Ekart base URL is not configured")
        body = {"request_id": str(uuid.uuid4()), "tracking_ids": ids}
        return await self._post(f"{self.base_url}{TRACK_PATH}", body, action="track")

    async def aclose(self) -> None:
        await self.client.aclose()
