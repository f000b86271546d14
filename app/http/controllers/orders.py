"""
Order routes
"""
import logging
from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.database import get_db
from app.http.requests.schemas import OrderCreate, OrderUpdate
from app.services import order_service

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_order(body: OrderCreate, db: Session = Depends(get_db)):
    """Create an order; volumetric weight is derived from length/breadth/height."""
    try:
        order = order_service.create_order(db, body.fields_dict())
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=409, detail=f"Order {body.order_id} already exists")
    return order_service.order_to_dict(order)


@router.get("")
async def list_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=200),
    db: Session = Depends(get_db),
):
    """Paginated orders, latest updated first"""
    return order_service.list_orders(db, page=page, limit=limit)


@router.put("/{order_pk}")
async def update_order(order_pk: str, body: OrderUpdate, db: Session = Depends(get_db)):
    """Partial update. Status and return tracking are owned by the return lifecycle."""
    order = order_service.update_order(db, order_pk, body.fields_dict())
    return {"data": order_service.order_to_dict(order)}


@router.delete("/{order_pk}")
async def delete_order(order_pk: str, db: Session = Depends(get_db)):
    order_service.delete_order(db, order_pk)
    return {"message": "Order deleted"}
