import hashlib
import hmac
import json
from datetime import datetime

from app.core.exceptions import ProviderError
from app.core.jwt import create_access_token
from app.core.security import hash_password
from app.models.reservation import Reservation
from app.models.user import User
from app.schemas.pricing import PricingConfigIn
from app.schemas.space import SpaceCreate
from app.services import spaces
from app.services.notifications import NotificationSender
from app.utils.razorpay_client import RazorpayGateway

KEY_SECRET = "test_key_secret"
WEBHOOK_SECRET = "test_webhook_secret"

# 2030-01-07 is a Monday
MONDAY = datetime(2030, 1, 7)


class FakeGateway(RazorpayGateway):
    """Network calls are canned; signature checks are the real SDK ones."""

    def __init__(self):
        super().__init__(
            key_id="rzp_test_key",
            key_secret=KEY_SECRET,
            webhook_secret=WEBHOOK_SECRET,
            timeout=1,
        )
        self.orders = []
        self.refunds = []
        self.payments = {}
        self.fail_next = False
        self._seq = 0

    def _maybe_fail(self, action):
        if self.fail_next:
            self.fail_next = False
            raise ProviderError(f"Payment provider error during {action}, please retry")

    def create_order(self, amount, currency, receipt, notes=None):
        self._maybe_fail("order creation")
        self._seq += 1
        order = {"id": f"order_test{self._seq}", "amount": int(round(amount * 100)),
                 "currency": currency, "receipt": receipt, "status": "created"}
        self.orders.append(order)
        return order

    def fetch_payment(self, payment_id):
        self._maybe_fail("payment fetch")
        return self.payments.get(payment_id, {"id": payment_id, "status": "captured"})

    def refund_payment(self, payment_id, amount, notes=None):
        self._maybe_fail("refund")
        self._seq += 1
        refund = {"id": f"rfnd_test{self._seq}", "payment_id": payment_id,
                  "amount": int(round(amount * 100))}
        self.refunds.append(refund)
        return refund


class RecordingSender(NotificationSender):
    def __init__(self):
        self.sent = []

    def send(self, template, recipient, context):
        self.sent.append((template, recipient, context))

    def templates(self):
        return [t for t, _, _ in self.sent]


_counter = {"n": 0}


def make_user(db, role="consumer", brand_id=None, created_at=None, name="Test User"):
    _counter["n"] += 1
    user = User(
        name=name,
        email=f"{role}{_counter['n']}@example.com",
        password_hash=hash_password("secret123"),
        role=role,
        brand_id=brand_id,
    )
    if created_at is not None:
        user.created_at = created_at
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def auth(user):
    token = create_access_token({"sub": user.email, "role": user.role})
    return {"Authorization": f"Bearer {token}"}


def make_space(db, owner, **pricing):
    pricing.setdefault("type", "hourly")
    pricing.setdefault("base_price", 100)
    data = SpaceCreate(
        name="Studio A",
        description="Bright studio",
        address="12 MG Road",
        capacity=10,
        pricing=PricingConfigIn(**pricing),
    )
    return spaces.create_space(db, owner, data)


def make_reservation(db, space, user, start, end, status="confirmed", total=100.0, **extra):
    reservation = Reservation(
        booking_code=f"BK{_next_code()}",
        space_id=space.id,
        user_id=user.id,
        start_time=start,
        end_time=end,
        status=status,
        payment_status=extra.pop("payment_status", "pending"),
        total_amount=total,
        original_amount=total,
        discount_amount=0,
        duration_hours=(end - start).total_seconds() / 3600,
        pricing_breakdown=[],
        **extra,
    )
    db.add(reservation)
    db.commit()
    db.refresh(reservation)
    return reservation


def _next_code():
    _counter["n"] += 1
    return f"{_counter['n']:012d}"


def sign_webhook(body: bytes) -> str:
    return hmac.new(WEBHOOK_SECRET.encode(), body, hashlib.sha256).hexdigest()


def sign_payment(order_id: str, payment_id: str) -> str:
    return hmac.new(
        KEY_SECRET.encode(), f"{order_id}|{payment_id}".encode(), hashlib.sha256
    ).hexdigest()


def webhook_body(event: str, payment=None, refund=None, order=None) -> bytes:
    payload = {"entity": "event", "event": event, "contains": [], "payload": {}}
    for key, entity in (("payment", payment), ("refund", refund), ("order", order)):
        if entity is not None:
            payload["contains"].append(key)
            payload["payload"][key] = {"entity": entity}
    return json.dumps(payload).encode()


