"""
Central API route registration. All HTTP controllers are mounted here with /api prefix.
"""
import logging
from fastapi import FastAPI

from app.http.controllers import ekart, orders

logger = logging.getLogger(__name__)


def register_routes(app: FastAPI, settings) -> None:
    """Register all API routers. Call from main.py after creating the FastAPI app."""
    app.include_router(orders.router, prefix=f"{settings.API_PREFIX}/orders", tags=["orders"])
    app.include_router(ekart.router, prefix=f"{settings.API_PREFIX}/ekart", tags=["ekart"])
    logger.debug("Routes registered under %s", settings.API_PREFIX)
