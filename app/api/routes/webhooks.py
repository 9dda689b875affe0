from typing import Optional

from fastapi import APIRouter, Depends, Header, Query, Request
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from app.core.dependencies import require_roles
from app.db.session import get_db
from app.models.enums import UserRole
from app.schemas.webhook import WebhookAck, WebhookLogPage, WebhookStats
from app.services import webhook_log, webhooks
from app.services.notifications import NotificationSender, get_notification_sender
from app.utils.razorpay_client import RazorpayGateway, get_payment_gateway

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])

admin_only = require_roles(UserRole.ADMIN)


# =====================================================================
# RAZORPAY CALLBACK
# =====================================================================
@router.post("/razorpay", response_model=WebhookAck)
async def razorpay_webhook(
    request: Request,
    x_razorpay_signature: Optional[str] = Header(None),
    x_razorpay_event_id: Optional[str] = Header(None),
    db: Session = Depends(get_db),
    gateway: RazorpayGateway = Depends(get_payment_gateway),
    sender: NotificationSender = Depends(get_notification_sender),
):
    # Signature is computed over the exact bytes received
    raw_body = await request.body()
    return await run_in_threadpool(
        webhooks.handle_webhook,
        db,
        raw_body,
        x_razorpay_signature,
        gateway,
        sender,
        webhook_id=x_razorpay_event_id,
    )


# =====================================================================
# AUDIT LOG  (Admin only)
# =====================================================================
@router.get("/logs", response_model=WebhookLogPage, dependencies=[Depends(admin_only)])
def logs(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    event_type: Optional[str] = None,
    status: Optional[str] = None,
    db: Session = Depends(get_db),
):
    return webhook_log.list_logs(db, page, limit, event_type, status)


@router.get("/stats", response_model=WebhookStats, dependencies=[Depends(admin_only)])
def stats(db: Session = Depends(get_db)):
    return webhook_log.get_stats(db)
