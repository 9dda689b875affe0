from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.db import base  # noqa: F401  registers every model on Base
from app.api.routes import auth, payments, reservations, spaces, webhooks
from app.core.exceptions import register_exception_handlers
from app.core.logging_config import get_logger
from app.core.redis import get_redis_client
from app.db.session import get_db

logger = get_logger()

app = FastAPI(
    title="Space Booking API",
    version="1.0.0",
    description="Spaces, dynamic pricing, reservations and Razorpay payments",
)

register_exception_handlers(app)


# Request Logging Middleware
@app.middleware("http")
async def log_requests(request, call_next):
    logger.info(f"REQUEST: {request.method} {request.url}")

    try:
        response = await call_next(request)
        logger.info(f"RESPONSE: {response.status_code} {request.url}")
        return response

    except Exception as e:
        logger.error(f"ERROR: {request.url} -> {str(e)}")
        raise e


app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth.router)
app.include_router(spaces.router)
app.include_router(reservations.router)
app.include_router(payments.router)
app.include_router(webhooks.router)


@app.get("/", tags=["Root"])
def root():
    return {"message": "Space booking backend running"}


@app.get("/health", tags=["Root"])
def health(db: Session = Depends(get_db)):
    """Database must answer; Redis is optional and only reported."""
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error(f"Health check failed: {e}")
        return JSONResponse(status_code=503, content={"status": "unavailable", "database": "down"})

    return {
        "status": "ok",
        "database": "up",
        "redis": "up" if get_redis_client() is not None else "disabled",
    }
