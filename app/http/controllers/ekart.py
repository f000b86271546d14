"""
Ekart return routes: create, track (live and stored), bulk track, retry and reschedule.
ReturnError subclasses raised by the lifecycle are rendered by the handler in main.py.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from app.database import get_db
from app.http.requests.schemas import BulkTrackRequest, CreateReturnRequest, ReturnFields
from app.services.order_service import order_to_dict
from app.services.return_lifecycle import ReturnLifecycleManager

logger = logging.getLogger(__name__)
router = APIRouter()


def get_return_manager(request: Request, db: Session = Depends(get_db)) -> ReturnLifecycleManager:
    """Lifecycle manager bound to the request's session and the app-owned Ekart client and order locks."""
    return ReturnLifecycleManager(db, request.app.state.ekart, request.app.state.order_locks)


@router.post("/return")
async def create_ekart_return(
    body: CreateReturnRequest,
    manager: ReturnLifecycleManager = Depends(get_return_manager),
):
    """Create an Ekart reverse shipment for an existing order."""
    result = await manager.create_return(
        body.order_id,
        body.customer_fields(),
        body.destination_overrides(),
    )
    return {
        "success": True,
        "message": "Ekart return shipment created successfully",
        "data": result,
    }


@router.get("/track/{order_id}")
async def track_ekart_shipment(
    order_id: str,
    manager: ReturnLifecycleManager = Depends(get_return_manager),
):
    """Poll Ekart for the order's return and append the latest event."""
    result = await manager.track_return(order_id)
    return {"success": True, "data": result}


@router.get("/tracking/{order_id}")
async def get_order_tracking(
    order_id: str,
    manager: ReturnLifecycleManager = Depends(get_return_manager),
):
    """Stored return tracking for an order (no Ekart call)."""
    return {"success": True, "data": manager.get_tracking(order_id)}


@router.post("/track/bulk")
async def bulk_track_shipments(
    body: BulkTrackRequest,
    manager: ReturnLifecycleManager = Depends(get_return_manager),
):
    """Raw Ekart tracking payload for a list of tracking IDs."""
    data = await manager.bulk_track(body.tracking_ids)
    return {"success": True, "data": data}


@router.post("/retry/{order_id}")
async def retry_failed_return(
    order_id: str,
    manager: ReturnLifecycleManager = Depends(get_return_manager),
):
    """Reset a cancelled-pickup return so a new one can be created."""
    order = await manager.retry_failed_return(order_id)
    return {
        "success": True,
        "message": "Return reset; the order can be returned again",
        "data": order_to_dict(order),
    }


@router.post("/reschedule/{order_id}")
async def reschedule_pickup(
    order_id: str,
    body: Optional[ReturnFields] = None,
    manager: ReturnLifecycleManager = Depends(get_return_manager),
):
    """Re-create a cancelled pickup with a fresh tracking ID. The body is optional; omitted fields come from the order."""
    result = await manager.reschedule_pickup(
        order_id,
        body.customer_fields() if body else None,
        body.destination_overrides() if body else None,
    )
    return {
        "success": True,
        "message": "Pickup rescheduled successfully",
        "data": result,
    }
