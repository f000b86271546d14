"""
Shared HTTP helpers with bounded timeouts for the Ekart API.
Courier calls are never retried here: retries are explicit lifecycle operations.
"""
import logging
from typing import Any, Optional

import httpx

from app.services.ekart_errors import TransportError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


def build_async_client(
    timeout: float = DEFAULT_TIMEOUT,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
    """AsyncClient owned by the courier client; pass `transport` to swap the network (tests)."""
    return httpx.AsyncClient(timeout=timeout, transport=transport)


async def post_no_retry(
    client: httpx.AsyncClient,
    url: str,
    *,
    json: Optional[dict] = None,
    headers: Optional[dict] = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> httpx.Response:
    """POST with no retries (non-idempotent). Timeouts and network errors raise TransportError."""
    try:
        return await client.post(url, json=json if json is not None else {}, headers=headers or {}, timeout=timeout)
    except httpx.TimeoutException as e:
        logger.warning("HTTP POST %s timed out after %ss", url, timeout)
        raise TransportError(f"Ekart request timed out after {timeout:g}s") from e
    except httpx.HTTPError as e:
        logger.warning("HTTP POST %s failed: %s", url, e)
        raise TransportError(f"Ekart request failed: {e}") from e


def response_json(resp: httpx.Response) -> Any:
    """Parsed JSON body, or None when the body is empty or not JSON."""
    if not resp.content:
        return None
    try:
        return resp.json()
    except ValueError:
        return None
