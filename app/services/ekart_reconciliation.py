"""
Interpretation of Ekart responses.

Create: response[0].status REQUEST_ACCEPTED / REQUEST_RECEIVED is acceptance, anything else
is a rejection classified through ekart_errors.
Track: payload is keyed by tracking ID; each history list is newest first, so index 0 is
the latest event.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

from app.services.ekart_errors import NotFoundError, TransportError, classify_rejection, rejection_message

logger = logging.getLogger(__name__)

ACCEPTED_STATUSES = frozenset({"REQUEST_ACCEPTED", "REQUEST_RECEIVED"})

SHIPMENT_DETAIL_KEYS = ("delivered", "shipment_value", "current_hub", "expected_delivery_date")


@dataclass
class CreateOutcome:
    accepted: bool
    status: str
    tracking_id: Optional[str]
    message: str
    raw: Any


@dataclass
class TrackingEvent:
    status: str
    timestamp: datetime
    description: Optional[str] = None
    city: Optional[str] = None
    hub_name: Optional[str] = None


def parse_create_response(data: Any) -> CreateOutcome:
    entries = data.get("response") if isinstance(data, dict) else None
    if not isinstance(entries, list) or not entries or not isinstance(entries[0], dict):
        return CreateOutcome(False, "", None, "Ekart returned no shipment status", data)
    first = entries[0]
    status = str(first.get("status") or "").strip().upper()
    tracking_id = str(first.get("tracking_id") or "").strip() or None
    return CreateOutcome(
        accepted=status in ACCEPTED_STATUSES,
        status=status,
        tracking_id=tracking_id,
        message=rejection_message(first.get("message")),
        raw=data,
    )


def accepted_tracking_id(data: Any, requested_tracking_id: str) -> str:
    """
    Tracking ID of an accepted create, preferring the one Ekart echoes back.
    Raises the classified ReturnError when Ekart did not accept.
    """
    outcome = parse_create_response(data)
    if not outcome.accepted:
        logger.warning("Ekart create not accepted status=%s message=%s", outcome.status or "-", outcome.message)
        raise classify_rejection(outcome.message or f"Ekart returned status {outcome.status or 'UNKNOWN'}", details=data)
    return outcome.tracking_id or requested_tracking_id


def parse_event_date(value: Any, default: Optional[datetime] = None) -> datetime:
    """Ekart event_date as epoch millis/seconds or ISO string -> aware datetime."""
    fallback = default or datetime.now(timezone.utc)
    if value is None or value == "":
        return fallback
    if isinstance(value, (int, float)):
        seconds = value / 1000 if value > 10**11 else value
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return fallback
    text = str(value).strip()
    if text.isdigit():
        return parse_event_date(int(text), fallback)
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        logger.debug("Unparseable Ekart event_date %r", value)
        return fallback
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def tracking_entry(data: Any, tracking_id: str) -> dict:
    """The tracking payload for one ID; NotFoundError when Ekart has nothing for it."""
    if not isinstance(data, dict):
        raise TransportError("Ekart tracking returned an unexpected response shape", details=data)
    entry = data.get(tracking_id)
    if not isinstance(entry, dict):
        raise NotFoundError(f"No Ekart tracking data for {tracking_id}")
    return entry


def latest_tracking_event(entry: dict) -> Optional[TrackingEvent]:
    history = entry.get("history") or []
    if not isinstance(history, list) or not history or not isinstance(history[0], dict):
        return None
    latest = history[0]
    status = str(latest.get("status") or "").strip()
    if not status:
        return None
    return TrackingEvent(
        status=status,
        timestamp=parse_event_date(latest.get("event_date")),
        description=latest.get("public_description"),
        city=latest.get("city"),
        hub_name=latest.get("hub_name"),
    )


def shipment_details(entry: dict) -> dict:
    return {key: entry.get(key) for key in SHIPMENT_DETAIL_KEYS}
