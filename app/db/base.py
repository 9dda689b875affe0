# Import every model so relationship() strings resolve and Alembic sees all tables
from app.db.session import Base  # noqa: F401
from app.models.user import User  # noqa: F401
from app.models.space import Space, PeakHour, TimeBlock, PromoCode, Bundle  # noqa: F401
from app.models.reservation import Reservation  # noqa: F401
from app.models.payment import Payment  # noqa: F401
from app.models.webhook_log import WebhookLog  # noqa: F401
