"""
Returns OMS - FastAPI Backend
"""
import logging
from fastapi import FastAPI, Request, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from fastapi import status
from sqlalchemy import text
import uvicorn

from routes.api import register_routes
from app.database import engine, Base
from app.config import settings
from app import models  # noqa: F401 - register all models with Base
from app.services.ekart_errors import ReturnError
from app.services.ekart_service import get_ekart_service
from app.services.order_locks import OrderLocks

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Returns OMS API",
    description="Order management with Ekart reverse-logistics returns",
    version="1.0.0",
    docs_url="/docs" if settings.IS_DEVELOPMENT else None,
    redoc_url="/redoc" if settings.IS_DEVELOPMENT else None,
)

logger.info("Starting Returns OMS API (env=%s, production=%s)", settings.ENV, settings.IS_PRODUCTION)

# Startup config validation (warn only)
for _key in ("EKART_AUTH_URL", "EKART_CREATE_URL", "EKART_BASE_URL", "MERCHANT_CODE", "BASIC_AUTH"):
    if not (getattr(settings, _key, "") or "").strip():
        logger.warning("%s is not set. Ekart return operations will fail.", _key)
if not settings.RETURN_DEST_ADDRESS_LINE1 or not settings.RETURN_DEST_PINCODE:
    logger.warning("RETURN_DEST_* fallback address is incomplete; returns need a destination on the order or request.")


@app.exception_handler(ReturnError)
async def return_error_handler(request: Request, exc: ReturnError):
    """Classified return failures: stable errorType plus a displayable message"""
    logger.info("%s %s -> %s: %s", request.method, request.url.path, exc.error_type, exc.message)
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.warning(f"Validation error: {exc.errors()}")
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "success": False,
            "errorType": "VALIDATION_ERROR",
            "detail": jsonable_errors(exc),
            "message": "Validation error: Please check your request format",
        },
    )


def jsonable_errors(exc: RequestValidationError) -> list:
    return [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")}
        for err in exc.errors()
    ]


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "detail": exc.detail},
        headers=exc.headers,
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "success": False,
            "detail": "Internal server error",
            "message": str(exc) if settings.IS_DEVELOPMENT else "An error occurred",
        },
    )


cors_kwargs = {
    "allow_origins": settings.ALLOWED_ORIGINS,
    "allow_credentials": True,
    "allow_methods": ["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    "allow_headers": ["*"],
}
cors_regex = settings.CORS_ORIGIN_REGEX
if cors_regex:
    cors_kwargs["allow_origin_regex"] = cors_regex

app.add_middleware(CORSMiddleware, **cors_kwargs)

register_routes(app, settings)


@app.on_event("startup")
async def startup_ekart_client() -> None:
    """Create tables and the app-owned Ekart client (with its token cache) and order locks."""
    Base.metadata.create_all(bind=engine)
    app.state.ekart = get_ekart_service()
    app.state.order_locks = OrderLocks()


@app.on_event("shutdown")
async def shutdown_ekart_client() -> None:
    ekart = getattr(app.state, "ekart", None)
    if ekart is not None:
        await ekart.aclose()


@app.get("/health")
async def health():
    """Health check endpoint. Includes DB connectivity check."""
    db_status = "ok"
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception as e:
        logger.warning("Health check DB ping failed: %s", e)
        db_status = "error"
    return {
        "status": "ok" if db_status == "ok" else "degraded",
        "service": "api",
        "db": db_status,
        "environment": settings.ENV,
    }


@app.get("/")
async def root():
    return {"message": "API is running...", "version": "1.0.0"}


if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.IS_DEVELOPMENT,
        log_level=settings.LOG_LEVEL.lower()
    )
