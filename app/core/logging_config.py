import os
import sys

from loguru import logger

from app.core.config import settings

LOG_DIR = settings.log_dir
ROTATION = "1 week"
LOG_FORMAT = "{time} | {level} | {extra[log_type]} | {message}"

# Create folder if missing
if not os.path.exists(LOG_DIR):
    os.makedirs(LOG_DIR)

# Remove default handler
logger.remove()
logger.configure(extra={"log_type": "app"})

logger.add(sys.stderr, level=settings.log_level, format=LOG_FORMAT)

# General application log
logger.add(
    f"{LOG_DIR}/app.log",
    rotation=ROTATION,
    retention="4 weeks",
    level=settings.log_level,
    enqueue=True,
    format=LOG_FORMAT,
)


def _only(log_type):
    return lambda record: record["extra"].get("log_type") == log_type


# One file per concern: reservations, payments, webhook deliveries, notifications
for name, log_type in (
    ("bookings", "booking"),
    ("payments", "payment"),
    ("webhooks", "webhook"),
    ("notifications", "notification"),
):
    logger.add(
        f"{LOG_DIR}/{name}.log",
        rotation=ROTATION,
        retention="4 weeks",
        level="INFO",
        enqueue=True,
        filter=_only(log_type),
        format=LOG_FORMAT,
    )

# Error logs
logger.add(
    f"{LOG_DIR}/errors.log",
    rotation=ROTATION,
    retention="8 weeks",
    level="ERROR",
    enqueue=True,
)


def get_logger(log_type: str | None = None):
    if log_type:
        return logger.bind(log_type=log_type)
    return logger
