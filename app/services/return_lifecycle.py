"""
Return Lifecycle Manager: create, track, retry-reset and reschedule Ekart returns for an order.

Each operation runs under the order's lock, performs at most one courier call, and only then
mutates the order in memory and commits once. A courier failure therefore leaves the order
untouched; the caller gets a ReturnError with a stable error_type. Nothing here retries on its
own: retry-reset and reschedule are the explicit, user-invoked retries.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

import httpx
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from app.models import Order
from app.services.ekart_errors import InvalidTransitionError, ReturnError, TransportError
from app.services.ekart_payload import build_shipment_request, ShipmentRequest
from app.services.ekart_reconciliation import (
    accepted_tracking_id,
    latest_tracking_event,
    shipment_details,
    tracking_entry,
)
from app.services.ekart_service import EkartService
from app.services.order_locks import OrderLocks
from app.services.order_service import get_order, return_tracking_to_dict
from app.services import return_state

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ReturnLifecycleManager:
    def __init__(
        self,
        db: Session,
        ekart: EkartService,
        locks: Optional[OrderLocks] = None,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.db = db
        self.ekart = ekart
        self.locks = locks or OrderLocks()
        self._clock = clock

    async def _courier(self, action: str, call: Awaitable[Any]) -> Any:
        try:
            return await call
        except ReturnError as e:
            logger.warning("Ekart %s failed: %s (%s)", action, e.message, e.error_type)
            raise
        except httpx.HTTPError as e:
            logger.warning("Ekart %s transport failure: %s", action, e)
            raise TransportError(f"Ekart {action} failed: {e}") from e

    def _commit(self, order_id: str) -> None:
        try:
            self.db.commit()
        except StaleDataError as e:
            self.db.rollback()
            logger.warning("Concurrent update of order %s rejected", order_id)
            raise InvalidTransitionError(
                "Order was modified by another request; reload and try again"
            ) from e
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception("Persisting return state for order %s failed", order_id)
            raise

    @staticmethod
    def _record_destination(order: Order, request: ShipmentRequest) -> None:
        for key, value in request.destination.items():
            if value:
                setattr(order, key, value)

    async def _send_create(self, request: ShipmentRequest) -> tuple[str, dict]:
        data = await self._courier("create", self.ekart.create_shipment(request.payload))
        return accepted_tracking_id(data, request.tracking_id), data

    async def create_return(
        self,
        order_id: str,
        customer_fields: Optional[dict] = None,
        destination_overrides: Optional[dict] = None,
    ) -> dict:
        """NONE -> RETURN_REQUESTED. Returns {trackingId, orderStatus}."""
        async with self.locks.hold(order_id):
            order = get_order(self.db, order_id)
            return_state.ensure_can_create(order.return_tracking)
            fields = dict(customer_fields or {})
            fields["order_id"] = order.order_id
            request = build_shipment_request(order, fields, destination_overrides)
            logger.info("Creating Ekart return order_id=%s tracking_id=%s", order_id, request.tracking_id)

            tracking_id, data = await self._send_create(request)

            return_state.apply_return_requested(
                order, tracking_id, self._clock(), description="Return shipment created with Ekart"
            )
            self._record_destination(order, request)
            order.ekart_response = data
            self._commit(order_id)
            logger.info("Ekart return accepted order_id=%s tracking_id=%s", order_id, tracking_id)
            return {"trackingId": tracking_id, "orderStatus": order.status}

    async def track_return(self, order_id: str) -> dict:
        """
        Poll Ekart and append the latest event. Only return_tracking is written: the
        transition receives the tracking row, never the order, so order.status is untouched.
        """
        async with self.locks.hold(order_id):
            order = get_order(self.db, order_id)
            tracking_id = return_state.ensure_can_track(order.return_tracking)
            data = await self._courier("track", self.ekart.track([tracking_id]))
            entry = tracking_entry(data, tracking_id)
            event = latest_tracking_event(entry)
            if event is not None:
                return_state.apply_tracking_event(order.return_tracking, event, self._clock())
                self._commit(order_id)
                logger.info("Ekart tracking order_id=%s status=%s", order_id, event.status)
            else:
                logger.info("Ekart tracking order_id=%s has no events yet", order_id)
            tracking = return_tracking_to_dict(order.return_tracking)
            return {
                "currentStatus": tracking["currentStatus"],
                "history": tracking["history"],
                "shipmentDetails": shipment_details(entry),
            }

    async def bulk_track(self, tracking_ids: list[str]) -> Any:
        """Raw Ekart tracking payload for arbitrary IDs; no order is touched."""
        return await self._courier("bulk track", self.ekart.track(tracking_ids))

    def get_tracking(self, order_id: str) -> dict:
        """Stored tracking for an order, no courier call."""
        order = get_order(self.db, order_id)
        return {"orderId": order.order_id, "status": order.status, **return_tracking_to_dict(order.return_tracking)}

    async def retry_failed_return(self, order_id: str) -> Order:
        """Pickup cancelled -> NONE: clears return tracking and sets the order back to New."""
        async with self.locks.hold(order_id):
            order = get_order(self.db, order_id)
            return_state.ensure_pickup_cancelled(order.return_tracking, "retry the return")
            return_state.apply_reset(order, self._clock())
            self._commit(order_id)
            self.db.refresh(order)
            logger.info("Return tracking reset order_id=%s", order_id)
            return order

    async def reschedule_pickup(
        self,
        order_id: str,
        fields: Optional[dict] = None,
        destination_overrides: Optional[dict] = None,
    ) -> dict:
        """Pickup cancelled -> RETURN_REQUESTED with a fresh tracking ID and lineage."""
        async with self.locks.hold(order_id):
            order = get_order(self.db, order_id)
            tracking = order.return_tracking
            return_state.ensure_pickup_cancelled(tracking, "reschedule pickup")
            overrides = dict(fields or {})
            overrides["order_id"] = order.order_id
            request = build_shipment_request(
                order,
                overrides,
                destination_overrides,
                exclude_tracking_ids=return_state.known_tracking_ids(tracking),
            )
            logger.info(
                "Rescheduling Ekart pickup order_id=%s previous=%s new=%s",
                order_id, tracking.ekart_tracking_id, request.tracking_id,
            )

            tracking_id, data = await self._send_create(request)

            return_state.apply_reschedule(order, tracking_id, self._clock())
            self._record_destination(order, request)
            order.ekart_response = data
            self._commit(order_id)
            return {
                "trackingId": tracking_id,
                "orderStatus": order.status,
                "retryCount": order.return_tracking.retry_count,
                "previousTrackingId": order.return_tracking.previous_tracking_id,
            }
