import math
import time
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.core.redis import delete_cache, get_cache, set_cache
from app.models.enums import WebhookStatus
from app.models.webhook_log import WebhookLog
from app.schemas.webhook import EventTypeStats, WebhookLogOut, WebhookLogPage, WebhookStats

STATS_CACHE_KEY = "webhooks:stats"
STATS_CACHE_TTL = 30


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


# ---------------------------------------------------------------------
# WRITES (each commits on its own so the row survives a failed dispatch)
# ---------------------------------------------------------------------
def record_received(
    db: Session, webhook_id: str, event_type: str, signature_verified: bool, summary: dict
) -> WebhookLog:
    entry = WebhookLog(
        webhook_id=webhook_id,
        event_type=event_type,
        status=WebhookStatus.RECEIVED.value,
        signature_verified=signature_verified,
        payload_summary=summary,
    )
    db.add(entry)
    db.commit()
    db.refresh(entry)
    delete_cache(STATS_CACHE_KEY)
    return entry


def mark_processed(db: Session, entry: WebhookLog, started: float) -> WebhookLog:
    entry.status = WebhookStatus.PROCESSED.value
    entry.processing_time_ms = _elapsed_ms(started)
    db.commit()
    delete_cache(STATS_CACHE_KEY)
    return entry


def mark_failed(db: Session, entry: WebhookLog, error: str, started: float) -> WebhookLog:
    entry.status = WebhookStatus.FAILED.value
    entry.error_message = error[:500]
    entry.processing_time_ms = _elapsed_ms(started)
    db.commit()
    delete_cache(STATS_CACHE_KEY)
    return entry


# ---------------------------------------------------------------------
# READS
# ---------------------------------------------------------------------
def list_logs(
    db: Session,
    page: int = 1,
    limit: int = 20,
    event_type: Optional[str] = None,
    status: Optional[str] = None,
) -> WebhookLogPage:
    query = db.query(WebhookLog)
    if event_type:
        query = query.filter(WebhookLog.event_type == event_type)
    if status:
        query = query.filter(WebhookLog.status == status)

    total = query.count()
    rows = (
        query.order_by(WebhookLog.received_at.desc(), WebhookLog.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return WebhookLogPage(
        items=[WebhookLogOut.model_validate(r) for r in rows],
        total=total,
        page=page,
        limit=limit,
        pages=math.ceil(total / limit) if total else 0,
    )


def get_stats(db: Session) -> WebhookStats:
    cached = get_cache(STATS_CACHE_KEY)
    if cached:
        return WebhookStats(**cached)

    rows = (
        db.query(WebhookLog.event_type, WebhookLog.status, func.count(WebhookLog.id))
        .group_by(WebhookLog.event_type, WebhookLog.status)
        .all()
    )

    per_type = {}
    totals = {s.value: 0 for s in WebhookStatus}
    for event_type, status, count in rows:
        bucket = per_type.setdefault(
            event_type, {"event_type": event_type, "total": 0, "processed": 0, "failed": 0}
        )
        bucket["total"] += count
        if status in (WebhookStatus.PROCESSED.value, WebhookStatus.FAILED.value):
            bucket[status] += count
        totals[status] = totals.get(status, 0) + count

    total = sum(totals.values())
    stats = WebhookStats(
        total=total,
        processed=totals[WebhookStatus.PROCESSED.value],
        failed=totals[WebhookStatus.FAILED.value],
        received=totals[WebhookStatus.RECEIVED.value],
        success_rate=round(totals[WebhookStatus.PROCESSED.value] / total * 100, 2) if total else 0.0,
        by_event_type=[
            EventTypeStats(**b) for b in sorted(per_type.values(), key=lambda b: -b["total"])
        ],
    )
    set_cache(STATS_CACHE_KEY, stats.model_dump(), ttl=STATS_CACHE_TTL)
    return stats
