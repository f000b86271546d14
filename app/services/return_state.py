"""
Return lifecycle state machine.

    NONE --create--> RETURN_REQUESTED --track--> <courier status>* --track--> ...
    "Reverse pickup cancelled" --reschedule--> RETURN_REQUESTED
    "Reverse pickup cancelled" --retry-reset--> NONE

Guards raise; transitions mutate ORM objects in memory only, the caller commits.
Tracking transitions take the ReturnTracking alone so they cannot reach order.status.
"""
import enum
from datetime import datetime
from typing import Optional

from app.models import Order, OrderStatus, ReturnTracking, ReturnTrackingEvent, PICKUP_CANCELLED_STATUS
from app.services.ekart_errors import InvalidTransitionError, NotFoundError
from app.services.ekart_reconciliation import TrackingEvent


class ReturnState(str, enum.Enum):
    NONE = "NONE"
    RETURN_REQUESTED = "RETURN_REQUESTED"
    COURIER_REPORTED = "COURIER_REPORTED"
    PICKUP_CANCELLED = "PICKUP_CANCELLED"


def ensure_tracking(order: Order) -> ReturnTracking:
    """Return the order's tracking row, creating the empty initial one if missing."""
    if order.return_tracking is None:
        order.return_tracking = ReturnTracking(current_status="", ekart_tracking_id="", retry_count=0)
    return order.return_tracking


def return_state(tracking: Optional[ReturnTracking]) -> ReturnState:
    if tracking is None or not tracking.current_status:
        return ReturnState.NONE
    if tracking.current_status == PICKUP_CANCELLED_STATUS:
        return ReturnState.PICKUP_CANCELLED
    if tracking.current_status == OrderStatus.RETURN_REQUESTED.value:
        return ReturnState.RETURN_REQUESTED
    return ReturnState.COURIER_REPORTED


def ensure_can_create(tracking: Optional[ReturnTracking]) -> None:
    state = return_state(tracking)
    if state != ReturnState.NONE or (tracking is not None and tracking.ekart_tracking_id):
        hint = " Use reschedule instead." if state == ReturnState.PICKUP_CANCELLED else ""
        raise InvalidTransitionError(
            f"A return already exists for this order (status: {tracking.current_status}).{hint}",
            current_status=tracking.current_status,
        )


def ensure_can_track(tracking: Optional[ReturnTracking]) -> str:
    if tracking is None or not tracking.ekart_tracking_id:
        raise NotFoundError("No Ekart tracking ID found for this order")
    return tracking.ekart_tracking_id


def ensure_pickup_cancelled(tracking: Optional[ReturnTracking], action: str) -> None:
    current = tracking.current_status if tracking is not None else ""
    if return_state(tracking) != ReturnState.PICKUP_CANCELLED:
        raise InvalidTransitionError(
            f"Cannot {action}: return status is '{current or 'none'}', expected '{PICKUP_CANCELLED_STATUS}'",
            current_status=current,
        )


def append_history(
    tracking: ReturnTracking,
    status: str,
    timestamp: datetime,
    *,
    description: Optional[str] = None,
    city: Optional[str] = None,
    hub_name: Optional[str] = None,
    previous_tracking_id: Optional[str] = None,
) -> ReturnTrackingEvent:
    event = ReturnTrackingEvent(
        seq=len(tracking.history),
        status=status,
        timestamp=timestamp,
        description=description,
        city=city,
        hub_name=hub_name,
        previous_tracking_id=previous_tracking_id,
    )
    tracking.history.append(event)
    return event


def apply_return_requested(
    order: Order,
    tracking_id: str,
    now: datetime,
    *,
    description: str,
    previous_tracking_id: Optional[str] = None,
) -> None:
    tracking = ensure_tracking(order)
    tracking.ekart_tracking_id = tracking_id
    tracking.current_status = OrderStatus.RETURN_REQUESTED.value
    tracking.last_updated = now
    append_history(
        tracking,
        OrderStatus.RETURN_REQUESTED.value,
        now,
        description=description,
        previous_tracking_id=previous_tracking_id,
    )
    order.status = OrderStatus.RETURN_REQUESTED.value


def apply_tracking_event(tracking: ReturnTracking, event: TrackingEvent, now: datetime) -> None:
    """Record a polled courier event. Appends; never edits earlier entries."""
    tracking.current_status = event.status
    tracking.last_updated = now
    append_history(
        tracking,
        event.status,
        event.timestamp,
        description=event.description,
        city=event.city,
        hub_name=event.hub_name,
    )


def known_tracking_ids(tracking: Optional[ReturnTracking]) -> set[str]:
    """Every tracking ID this order's lineage has used; a new attempt must avoid all of them."""
    if tracking is None:
        return set()
    ids = {tracking.ekart_tracking_id, tracking.previous_tracking_id}
    ids.update(e.previous_tracking_id for e in tracking.history)
    return {i for i in ids if i}


def cancellation_date(tracking: ReturnTracking) -> Optional[datetime]:
    for entry in reversed(tracking.history):
        if entry.status == PICKUP_CANCELLED_STATUS:
            return entry.timestamp
    return tracking.last_updated


def apply_reset(order: Order, now: datetime) -> None:
    tracking = ensure_tracking(order)
    tracking.history.clear()
    tracking.current_status = ""
    tracking.ekart_tracking_id = ""
    tracking.retry_count = 0
    tracking.previous_attempt_cancelled = False
    tracking.cancelled_date = None
    tracking.previous_tracking_id = None
    tracking.last_updated = now
    order.status = OrderStatus.NEW.value


def apply_reschedule(order: Order, new_tracking_id: str, now: datetime) -> None:
    tracking = ensure_tracking(order)
    previous = tracking.ekart_tracking_id
    tracking.cancelled_date = cancellation_date(tracking) or now
    tracking.previous_attempt_cancelled = True
    tracking.previous_tracking_id = previous
    tracking.retry_count = (tracking.retry_count or 0) + 1
    apply_return_requested(
        order,
        new_tracking_id,
        now,
        description="Pickup rescheduled with Ekart",
        previous_tracking_id=previous,
    )
