from datetime import datetime

from sqlalchemy import JSON, Boolean, Column, DateTime, Integer, String

from app.db.session import Base
from app.models.enums import WebhookStatus


class WebhookLog(Base):
    """Audit row per inbound webhook delivery. Informational only."""

    __tablename__ = "webhook_logs"

    id = Column(Integer, primary_key=True, index=True)
    webhook_id = Column(String, nullable=False, index=True)
    event_type = Column(String, nullable=False, index=True)

    status = Column(String, nullable=False, default=WebhookStatus.RECEIVED.value, index=True)
    signature_verified = Column(Boolean, nullable=False, default=False)

    # ids / amount / status only, never the full provider payload
    payload_summary = Column(JSON, nullable=False, default=dict)

    error_message = Column(String, nullable=True)
    processing_time_ms = Column(Integer, nullable=True)

    received_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
