from datetime import datetime
from typing import Annotated, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------
# PROVIDER ENTITIES (amounts in paise)
# ---------------------------------------------------------------------
class PaymentEntity(BaseModel):
    id: str
    order_id: Optional[str] = None
    amount: int = 0
    currency: Optional[str] = None
    status: Optional[str] = None
    method: Optional[str] = None
    error_code: Optional[str] = None
    error_description: Optional[str] = None

    model_config = {"extra": "ignore"}


class RefundEntity(BaseModel):
    id: str
    payment_id: str
    amount: int = 0
    status: Optional[str] = None
    notes: Union[Dict[str, str], List[str]] = {}

    model_config = {"extra": "ignore"}


class OrderEntity(BaseModel):
    id: str
    amount: int = 0
    status: Optional[str] = None

    model_config = {"extra": "ignore"}


# ---------------------------------------------------------------------
# EVENT VARIANTS
# ---------------------------------------------------------------------
class PaymentCaptured(BaseModel):
    kind: Literal["payment.captured"] = "payment.captured"
    payment: PaymentEntity


class PaymentFailed(BaseModel):
    kind: Literal["payment.failed"] = "payment.failed"
    payment: PaymentEntity


class PaymentAuthorized(BaseModel):
    kind: Literal["payment.authorized"] = "payment.authorized"
    payment: PaymentEntity


class RefundProcessed(BaseModel):
    kind: Literal["refund.processed"] = "refund.processed"
    refund: RefundEntity
    payment: Optional[PaymentEntity] = None


class OrderPaid(BaseModel):
    kind: Literal["order.paid"] = "order.paid"
    order: OrderEntity
    payment: Optional[PaymentEntity] = None


class UnrecognizedEvent(BaseModel):
    kind: Literal["unrecognized"] = "unrecognized"
    event_type: str
    reason: str


WebhookEvent = Annotated[
    Union[
        PaymentCaptured,
        PaymentFailed,
        PaymentAuthorized,
        RefundProcessed,
        OrderPaid,
        UnrecognizedEvent,
    ],
    Field(discriminator="kind"),
]


# ---------------------------------------------------------------------
# API
# ---------------------------------------------------------------------
class WebhookAck(BaseModel):
    status: str = "ok"
    event: str
    handled: bool


class WebhookLogOut(BaseModel):
    id: int
    webhook_id: str
    event_type: str
    status: str
    signature_verified: bool
    payload_summary: dict = {}
    error_message: Optional[str] = None
    processing_time_ms: Optional[int] = None
    received_at: datetime

    model_config = {"from_attributes": True}


class WebhookLogPage(BaseModel):
    items: List[WebhookLogOut]
    total: int
    page: int
    limit: int
    pages: int


class EventTypeStats(BaseModel):
    event_type: str
    total: int
    processed: int
    failed: int


class WebhookStats(BaseModel):
    total: int
    processed: int
    failed: int
    received: int
    success_rate: float
    by_event_type: List[EventTypeStats]
