"""
Order record helpers: create / list / update / delete and response serialization.
The return_tracking sub-record is written only by the return lifecycle.
"""
import logging
from datetime import datetime
from typing import Any, Optional

from sqlalchemy.orm import Session

from app.models import Order, OrderProduct, ReturnTracking
from app.services.ekart_errors import OrderNotFoundError

logger = logging.getLogger(__name__)

# Fields callers may never write through the generic order endpoints
PROTECTED_FIELDS = {"id", "status", "return_tracking", "ekart_response", "version", "created_at", "updated_at"}


def calc_volumetric_weight(length: Any, breadth: Any, height: Any) -> Optional[float]:
    """Volumetric weight in kg from cm dimensions (divisor 5000); None if any dimension is missing."""
    if not length or not breadth or not height:
        return None
    return (float(length) * float(breadth) * float(height)) / 5000


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _number(value: Any) -> Optional[float]:
    return float(value) if value is not None else None


def return_tracking_to_dict(tracking: Optional[ReturnTracking]) -> dict:
    if tracking is None:
        return {
            "currentStatus": "",
            "history": [],
            "ekartTrackingId": "",
            "lastUpdated": None,
            "retryCount": 0,
            "previousAttemptCancelled": False,
            "cancelledDate": None,
            "previousTrackingId": None,
        }
    return {
        "currentStatus": tracking.current_status or "",
        "history": [
            {
                "status": e.status,
                "timestamp": _iso(e.timestamp),
                "description": e.description,
                "city": e.city,
                "hubName": e.hub_name,
                "previousTrackingId": e.previous_tracking_id,
            }
            for e in tracking.history
        ],
        "ekartTrackingId": tracking.ekart_tracking_id or "",
        "lastUpdated": _iso(tracking.last_updated),
        "retryCount": tracking.retry_count or 0,
        "previousAttemptCancelled": bool(tracking.previous_attempt_cancelled),
        "cancelledDate": _iso(tracking.cancelled_date),
        "previousTrackingId": tracking.previous_tracking_id,
    }


def order_to_dict(order: Order) -> dict:
    return {
        "id": order.id,
        "orderId": order.order_id,
        "shopifyId": order.shopify_id,
        "orderDate": _iso(order.order_date),
        "awb": order.awb,
        "customerName": order.customer_name,
        "customerPhone": order.customer_phone,
        "customerEmail": order.customer_email,
        "customerAddress": order.customer_address,
        "city": order.city,
        "state": order.state,
        "pincode": order.pincode,
        "destinationName": order.destination_name,
        "destinationAddressLine1": order.destination_address_line1,
        "destinationAddressLine2": order.destination_address_line2,
        "destinationCity": order.destination_city,
        "destinationState": order.destination_state,
        "destinationPincode": order.destination_pincode,
        "destinationPhone": order.destination_phone,
        "products": [
            {
                "productName": p.product_name,
                "quantity": p.quantity,
                "imageUrl": p.image_url or "",
                "smartChecks": p.smart_checks or [],
            }
            for p in order.products
        ],
        "deadWeight": order.dead_weight,
        "length": order.length,
        "breadth": order.breadth,
        "height": order.height,
        "volumetricWeight": order.volumetric_weight,
        "amount": _number(order.amount) or 0.0,
        "paymentMode": order.payment_mode or "",
        "hsnCode": order.hsn_code,
        "gstinNumber": order.gstin_number,
        "invoiceReference": order.invoice_reference,
        "status": order.status,
        "returnTracking": return_tracking_to_dict(order.return_tracking),
        "createdAt": _iso(order.created_at),
        "updatedAt": _iso(order.updated_at),
    }


def get_order(db: Session, order_id: str) -> Order:
    """Load by external order_id; OrderNotFoundError when the record does not exist."""
    order = db.query(Order).filter(Order.order_id == order_id).first()
    if not order:
        raise OrderNotFoundError(f"Order {order_id} not found")
    return order


def _apply_fields(order: Order, data: dict) -> None:
    products = data.pop("products", None)
    for key, value in data.items():
        if key in PROTECTED_FIELDS or not hasattr(Order, key):
            continue
        setattr(order, key, value)
    if order.length and order.breadth and order.height:
        order.volumetric_weight = calc_volumetric_weight(order.length, order.breadth, order.height)
    if products is not None:
        order.products = [
            OrderProduct(
                position=idx,
                product_name=p["product_name"],
                quantity=p["quantity"],
                image_url=p.get("image_url") or "",
                smart_checks=p.get("smart_checks") or [],
            )
            for idx, p in enumerate(products)
        ]


def create_order(db: Session, data: dict) -> Order:
    order = Order(status="New")
    order.return_tracking = ReturnTracking(current_status="", ekart_tracking_id="", retry_count=0)
    _apply_fields(order, dict(data))
    db.add(order)
    db.commit()
    db.refresh(order)
    logger.info("Order created order_id=%s", order.order_id)
    return order


def list_orders(db: Session, page: int = 1, limit: int = 20) -> dict:
    page = max(1, int(page or 1))
    limit = max(1, int(limit or 20))
    query = db.query(Order).order_by(Order.updated_at.desc(), Order.created_at.desc())
    total = query.count()
    orders = query.offset((page - 1) * limit).limit(limit).all()
    return {"total": total, "page": page, "limit": limit, "data": [order_to_dict(o) for o in orders]}


def update_order(db: Session, order_pk: str, data: dict) -> Order:
    order = db.query(Order).filter(Order.id == order_pk).first()
    if not order:
        raise OrderNotFoundError("Order not found")
    _apply_fields(order, dict(data))
    db.commit()
    db.refresh(order)
    return order


def delete_order(db: Session, order_pk: str) -> None:
    order = db.query(Order).filter(Order.id == order_pk).first()
    if not order:
        raise OrderNotFoundError("Order not found")
    db.delete(order)
    db.commit()
    logger.info("Order deleted id=%s", order_pk)
