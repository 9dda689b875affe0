import threading

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.core.exceptions import NoCompletedPayment
from app.db.base import Base
from app.models.payment import Payment
from app.models.user import User
from app.schemas.payment import RefundRequest
from app.services import payments
from helpers import (
    MONDAY,
    FakeGateway,
    RecordingSender,
    auth,
    make_reservation,
    make_space,
    make_user,
    sign_payment,
)


def at(hour):
    return MONDAY.replace(hour=hour)


def pending(db, owner, consumer, total=200.0):
    space = make_space(db, owner)
    return make_reservation(db, space, consumer, at(10), at(12), status="pending_payment", total=total)


def initialize(client, consumer, reservation, **extra):
    return client.post(
        "/payments/initialize",
        json={"reservation_id": reservation.id, **extra},
        headers=auth(consumer),
    )


def verify(client, consumer, reservation, order_id, payment_id="pay_test1", signature=None):
    return client.post(
        "/payments/verify",
        json={
            "reservation_id": reservation.id,
            "razorpay_order_id": order_id,
            "razorpay_payment_id": payment_id,
            "razorpay_signature": signature or sign_payment(order_id, payment_id),
        },
        headers=auth(consumer),
    )


def paid(client, db, owner, consumer):
    reservation = pending(db, owner, consumer)
    order_id = initialize(client, consumer, reservation).json()["order_id"]
    assert verify(client, consumer, reservation, order_id).status_code == 200
    return reservation


# ---------------------------------------------------------------------
# INITIALIZE
# ---------------------------------------------------------------------
def test_initialize_creates_order_and_payment(client, db, owner, consumer, gateway):
    reservation = pending(db, owner, consumer)

    res = initialize(client, consumer, reservation, amount=200)

    assert res.status_code == 200
    body = res.json()
    assert body["order_id"] == "order_test1"
    assert body["amount"] == 200
    assert body["currency"] == "INR"
    assert body["key_id"] == "rzp_test_key"
    assert gateway.orders[0]["amount"] == 20000
    assert gateway.orders[0]["receipt"] == reservation.booking_code

    payment = db.query(Payment).filter(Payment.reservation_id == reservation.id).one()
    assert payment.status == "pending"
    assert payment.order_id == "order_test1"


def test_initialize_rejects_amount_mismatch(client, db, owner, consumer, gateway):
    reservation = pending(db, owner, consumer)

    res = initialize(client, consumer, reservation, amount=150)

    assert res.status_code == 400
    assert gateway.orders == []


def test_initialize_requires_pending_payment(client, db, owner, consumer):
    space = make_space(db, owner)
    confirmed = make_reservation(db, space, consumer, at(10), at(12), status="confirmed")

    res = initialize(client, consumer, confirmed)

    assert res.status_code == 400
    assert res.json()["detail"]["code"] == "InvalidStateTransition"


def test_initialize_for_someone_else_is_forbidden(client, db, owner, consumer):
    reservation = pending(db, owner, consumer)
    stranger = make_user(db, role="consumer")

    assert initialize(client, stranger, reservation).status_code == 403


def test_provider_outage_is_bad_gateway(client, db, owner, consumer, gateway):
    reservation = pending(db, owner, consumer)
    gateway.fail_next = True

    res = initialize(client, consumer, reservation)

    assert res.status_code == 502
    assert res.json()["detail"]["code"] == "ProviderError"
    assert db.query(Payment).count() == 0


# ---------------------------------------------------------------------
# VERIFY
# ---------------------------------------------------------------------
def test_verify_confirms_and_notifies_once(client, db, owner, consumer, sender):
    reservation = pending(db, owner, consumer)
    order_id = initialize(client, consumer, reservation).json()["order_id"]

    res = verify(client, consumer, reservation, order_id)

    assert res.status_code == 200
    assert res.json()["status"] == "confirmed"
    assert res.json()["payment_status"] == "completed"
    assert res.json()["razorpay_payment_id"] == "pay_test1"
    assert sender.templates() == ["booking_confirmation"]

    again = verify(client, consumer, reservation, order_id)
    assert again.status_code == 200
    assert sender.templates() == ["booking_confirmation"]


def test_verify_with_bad_signature_changes_nothing(client, db, owner, consumer, sender):
    reservation = pending(db, owner, consumer)
    order_id = initialize(client, consumer, reservation).json()["order_id"]

    res = verify(client, consumer, reservation, order_id, signature="0" * 64)

    assert res.status_code == 400
    assert res.json()["detail"]["code"] == "SignatureInvalid"
    db.expire_all()
    assert reservation.status == "pending_payment"
    assert reservation.payments[0].status == "pending"
    assert sender.sent == []


def test_verify_reports_provider_failure(client, db, owner, consumer, gateway, sender):
    reservation = pending(db, owner, consumer)
    order_id = initialize(client, consumer, reservation).json()["order_id"]
    gateway.payments["pay_test1"] = {
        "id": "pay_test1",
        "order_id": order_id,
        "status": "failed",
        "error_description": "Card declined",
    }

    res = verify(client, consumer, reservation, order_id)

    assert res.status_code == 200
    assert res.json()["status"] == "pending_payment"
    assert res.json()["payment_status"] == "failed"
    assert sender.templates() == ["payment_failure"]
    db.expire_all()
    assert reservation.payments[0].failure_reason == "Card declined"


def test_verify_rejects_payment_from_another_order(client, db, owner, consumer, gateway):
    reservation = pending(db, owner, consumer)
    order_id = initialize(client, consumer, reservation).json()["order_id"]
    gateway.payments["pay_test1"] = {"id": "pay_test1", "order_id": "order_other", "status": "captured"}

    res = verify(client, consumer, reservation, order_id)

    assert res.status_code == 400
    db.expire_all()
    assert reservation.status == "pending_payment"


def test_verify_unknown_order_is_404(client, db, owner, consumer):
    reservation = pending(db, owner, consumer)

    assert verify(client, consumer, reservation, "order_missing").status_code == 404


# ---------------------------------------------------------------------
# REFUND
# ---------------------------------------------------------------------
def test_full_refund_cancels_reservation(client, db, owner, consumer, gateway, sender):
    reservation = paid(client, db, owner, consumer)

    res = client.post(
        f"/payments/refund/{reservation.id}", json={"reason": "Venue closed"}, headers=auth(owner)
    )

    assert res.status_code == 200
    body = res.json()
    assert body["refund_amount"] == 200
    assert body["status"] == "refunded"
    assert gateway.refunds[0]["payment_id"] == "pay_test1"
    assert gateway.refunds[0]["amount"] == 20000
    assert sender.templates() == ["booking_confirmation", "refund_confirmation"]

    db.expire_all()
    assert reservation.status == "cancelled"
    assert reservation.payment_status == "refunded"
    assert reservation.cancellation_reason == "Venue closed"


def test_partial_refund_by_admin(client, db, owner, consumer, admin, gateway):
    reservation = paid(client, db, owner, consumer)

    res = client.post(f"/payments/refund/{reservation.id}", json={"amount": 50}, headers=auth(admin))

    assert res.status_code == 200
    assert res.json()["refund_amount"] == 50
    assert gateway.refunds[0]["amount"] == 5000


def test_refund_cannot_exceed_amount_paid(client, db, owner, consumer, gateway):
    reservation = paid(client, db, owner, consumer)

    res = client.post(f"/payments/refund/{reservation.id}", json={"amount": 500}, headers=auth(owner))

    assert res.status_code == 400
    assert gateway.refunds == []


def test_refund_without_completed_payment(client, db, owner, consumer):
    reservation = pending(db, owner, consumer)

    res = client.post(f"/payments/refund/{reservation.id}", headers=auth(owner))

    assert res.status_code == 400
    assert res.json()["detail"]["code"] == "NoCompletedPayment"


def test_guest_cannot_refund(client, db, owner, consumer, gateway):
    reservation = paid(client, db, owner, consumer)

    res = client.post(f"/payments/refund/{reservation.id}", headers=auth(consumer))

    assert res.status_code == 403
    assert gateway.refunds == []


# ---------------------------------------------------------------------
# HISTORY
# ---------------------------------------------------------------------
def test_history_lists_newest_first(client, db, owner, consumer):
    reservation = pending(db, owner, consumer)
    initialize(client, consumer, reservation)
    initialize(client, consumer, reservation)

    res = client.get(f"/payments/history/{reservation.id}", headers=auth(consumer))

    assert res.status_code == 200
    assert [p["order_id"] for p in res.json()] == ["order_test2", "order_test1"]

    stranger = make_user(db, role="consumer")
    assert client.get(f"/payments/history/{reservation.id}", headers=auth(stranger)).status_code == 403


def test_concurrent_refunds_call_the_provider_once(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'refunds.db'}", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    Session = sessionmaker(bind=engine, autocommit=False, autoflush=False)

    setup = Session()
    owner = make_user(setup, role="brand_owner")
    guest = make_user(setup, role="consumer")
    space = make_space(setup, owner)
    reservation = make_reservation(
        setup, space, guest, at(10), at(12), status="confirmed", total=200.0,
        payment_status="completed",
    )
    setup.add(
        Payment(
            reservation_id=reservation.id,
            order_id="order_paid",
            payment_id="pay_paid",
            amount=200.0,
            status="completed",
        )
    )
    setup.commit()
    reservation_id, owner_id = reservation.id, owner.id
    setup.close()

    gateway, sender = FakeGateway(), RecordingSender()
    barrier = threading.Barrier(2)
    refunded, rejected, errors = [], [], []

    def attempt():
        session = Session()
        try:
            actor = session.get(User, owner_id)
            barrier.wait(timeout=5)
            result = payments.refund_reservation(
                session, reservation_id, actor, RefundRequest(reason="Venue closed"), gateway, sender
            )
            refunded.append(result.refund_id)
        except NoCompletedPayment:
            rejected.append(True)
        except Exception as e:  # noqa: BLE001
            errors.append(e)
        finally:
            session.close()

    threads = [threading.Thread(target=attempt) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert len(refunded) == 1
    assert len(rejected) == 1
    assert len(gateway.refunds) == 1
    assert sender.templates() == ["refund_confirmation"]
    engine.dispose()
