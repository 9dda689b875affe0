import re
import threading
from datetime import datetime, timedelta

import pytest
from icalendar import Calendar
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.core.exceptions import Conflict
from app.db.base import Base
from app.models.space import PromoCode, TimeBlock
from app.models.user import User
from app.schemas.reservation import ReservationCreate
from app.services import reservations
from app.utils.timeutils import business_tz
from helpers import MONDAY, auth, make_reservation, make_space, make_user

PROMO_WINDOW = {"valid_from": "2020-01-01T00:00:00", "valid_until": "2099-01-01T00:00:00"}


def at(hour):
    return MONDAY.replace(hour=hour)


def booking(space, start, end, **extra):
    return {
        "space_id": space.id,
        "start_time": start.isoformat(),
        "end_time": end.isoformat(),
        **extra,
    }


# ---------------------------------------------------------------------
# CREATE
# ---------------------------------------------------------------------
def test_paid_reservation_waits_for_payment(client, db, owner, consumer):
    space = make_space(db, owner)

    res = client.post("/reservations/", json=booking(space, at(10), at(12)), headers=auth(consumer))

    assert res.status_code == 201
    body = res.json()
    assert body["status"] == "pending_payment"
    assert body["payment_status"] == "pending"
    assert body["total_amount"] == 200
    assert body["duration_hours"] == 2
    assert re.fullmatch(r"BK\d{8}[A-Z0-9]{4}", body["booking_code"])
    assert [line["type"] for line in body["pricing_breakdown"]] == ["hourly_rate"]


def test_free_reservation_waits_for_approval(client, db, owner, consumer):
    space = make_space(db, owner, type="free")

    res = client.post("/reservations/", json=booking(space, at(10), at(12)), headers=auth(consumer))

    assert res.status_code == 201
    assert res.json()["status"] == "pending_approval"
    assert res.json()["payment_status"] == "not_required"
    assert res.json()["total_amount"] == 0


def test_overlapping_reservation_is_conflict(client, db, owner, consumer):
    space = make_space(db, owner)
    first = client.post("/reservations/", json=booking(space, at(10), at(12)), headers=auth(consumer))
    assert first.status_code == 201

    res = client.post("/reservations/", json=booking(space, at(11), at(13)), headers=auth(consumer))

    assert res.status_code == 409
    detail = res.json()["detail"]
    assert detail["code"] == "Conflict"
    assert detail["details"]["conflicting_reservations"] == [first.json()["id"]]


def test_back_to_back_reservations_are_allowed(client, db, owner, consumer):
    space = make_space(db, owner)
    client.post("/reservations/", json=booking(space, at(10), at(12)), headers=auth(consumer))

    res = client.post("/reservations/", json=booking(space, at(12), at(14)), headers=auth(consumer))

    assert res.status_code == 201


def test_cancelled_reservation_frees_the_slot(client, db, owner, consumer):
    space = make_space(db, owner)
    make_reservation(db, space, consumer, at(10), at(12), status="cancelled")

    res = client.post("/reservations/", json=booking(space, at(10), at(12)), headers=auth(consumer))

    assert res.status_code == 201


@pytest.mark.parametrize(
    "start, end",
    [
        (datetime(2020, 1, 6, 10), datetime(2020, 1, 6, 12)),
        (MONDAY.replace(hour=12), MONDAY.replace(hour=10)),
    ],
)
def test_past_or_inverted_interval_is_rejected(client, db, owner, consumer, start, end):
    space = make_space(db, owner)

    res = client.post("/reservations/", json=booking(space, start, end), headers=auth(consumer))

    assert res.status_code == 400


def test_maximum_booking_hours(client, db, owner, consumer):
    space = make_space(db, owner, maximum_booking_hours=4)

    res = client.post("/reservations/", json=booking(space, at(9), at(14)), headers=auth(consumer))

    assert res.status_code == 400
    assert "4 hours" in res.json()["detail"]["message"]


def test_unauthenticated_create_is_rejected(client, db, owner):
    space = make_space(db, owner)
    res = client.post("/reservations/", json=booking(space, at(10), at(12)))
    assert res.status_code in (401, 403)


# ---------------------------------------------------------------------
# COUNTERS
# ---------------------------------------------------------------------
def test_promo_use_is_counted_and_exhausted(client, db, owner, consumer):
    space = make_space(
        db,
        owner,
        promo_codes=[{"code": "HALF", "type": "percentage", "value": 50, "max_uses": 1, **PROMO_WINDOW}],
    )

    first = client.post(
        "/reservations/", json=booking(space, at(10), at(12), promo_code="HALF"), headers=auth(consumer)
    )
    assert first.status_code == 201
    assert first.json()["total_amount"] == 100
    assert first.json()["discount_amount"] == 100
    assert first.json()["promo_code"] == "HALF"

    db.expire_all()
    assert db.query(PromoCode).filter(PromoCode.space_id == space.id).one().used_count == 1

    second = client.post(
        "/reservations/", json=booking(space, at(14), at(16), promo_code="HALF"), headers=auth(consumer)
    )
    assert second.status_code == 201
    assert second.json()["total_amount"] == 200
    assert second.json()["promo_code"] is None

    db.expire_all()
    assert db.query(PromoCode).filter(PromoCode.space_id == space.id).one().used_count == 1


def test_bundle_purchase_is_counted(client, db, owner, consumer):
    space = make_space(
        db,
        owner,
        bundles=[{"name": "Morning", "price": 120, "value": 2, **PROMO_WINDOW}],
    )
    bundle_id = space.bundles[0].id

    res = client.post(
        "/reservations/", json=booking(space, at(10), at(12), bundle_id=bundle_id), headers=auth(consumer)
    )

    assert res.status_code == 201
    assert res.json()["total_amount"] == 120
    assert res.json()["bundle_id"] == bundle_id
    db.expire_all()
    assert space.bundles[0].current_purchases == 1


def test_full_package_is_conflict(client, db, owner, consumer):
    space = make_space(
        db, owner, type="package", time_blocks=[{"hours": 2, "price": 150, "max_bookings": 1}]
    )

    first = client.post("/reservations/", json=booking(space, at(10), at(12)), headers=auth(consumer))
    assert first.status_code == 201
    assert first.json()["total_amount"] == 150

    second = client.post("/reservations/", json=booking(space, at(14), at(16)), headers=auth(consumer))
    assert second.status_code == 409
    assert second.json()["detail"]["message"] == "This package is fully booked"

    db.expire_all()
    assert db.query(TimeBlock).filter(TimeBlock.space_id == space.id).one().current_bookings == 1
    assert len(reservations.list_for_user(db, consumer)) == 1


def test_booking_a_listed_slot_charges_its_block(client, db, owner, consumer):
    space = make_space(
        db,
        owner,
        type="package",
        time_blocks=[{"hours": 4, "price": 250}, {"hours": 2, "price": 150}],
    )
    half_day, short = space.time_blocks

    res = client.post(
        "/reservations/",
        json=booking(space, at(10), at(12), time_block_id=short.id),
        headers=auth(consumer),
    )

    assert res.status_code == 201
    assert res.json()["total_amount"] == 150
    db.expire_all()
    assert short.current_bookings == 1
    assert half_day.current_bookings == 0

    unpinned = client.post("/reservations/", json=booking(space, at(14), at(16)), headers=auth(consumer))
    assert unpinned.json()["total_amount"] == 250

    unknown = client.post(
        "/reservations/",
        json=booking(space, at(17), at(19), time_block_id=9999),
        headers=auth(consumer),
    )
    assert unknown.status_code == 400
    assert unknown.json()["detail"]["details"] == {"time_block_id": "not usable for this booking"}


# ---------------------------------------------------------------------
# QUOTE
# ---------------------------------------------------------------------
def test_quote_matches_created_reservation(client, db, owner, consumer):
    space = make_space(
        db,
        owner,
        minimum_booking_hours=2,
        peak_hours=[{"day": "monday", "start_time": "09:00", "end_time": "17:00", "multiplier": 1.5}],
        promo_codes=[{"code": "TEN", "type": "percentage", "value": 10, **PROMO_WINDOW}],
    )
    data = booking(space, at(10), at(11), promo_code="TEN")

    quote = client.post("/reservations/calculate-price", json=data, headers=auth(consumer))
    created = client.post("/reservations/", json=data, headers=auth(consumer))

    assert quote.status_code == 200
    assert created.status_code == 201
    assert quote.json()["total_price"] == created.json()["total_amount"]
    assert quote.json()["breakdown"] == created.json()["pricing_breakdown"]


def test_quote_reports_bad_promo_without_failing(client, db, owner, consumer):
    space = make_space(db, owner)

    res = client.post(
        "/reservations/calculate-price",
        json=booking(space, at(10), at(12), promo_code="NOPE"),
        headers=auth(consumer),
    )

    assert res.status_code == 200
    assert res.json()["total_price"] == 200
    assert res.json()["promo_error"] == "Invalid or inactive promo code"


# ---------------------------------------------------------------------
# TRANSITIONS
# ---------------------------------------------------------------------
def test_owner_approves_pending_reservation(client, db, owner, consumer, sender):
    space = make_space(db, owner, type="free")
    pending = make_reservation(db, space, consumer, at(10), at(12), status="pending_approval", total=0)

    denied = client.post(f"/reservations/{pending.id}/approve", headers=auth(consumer))
    assert denied.status_code == 403

    res = client.post(f"/reservations/{pending.id}/approve", headers=auth(owner))
    assert res.status_code == 200
    assert res.json()["status"] == "confirmed"
    assert res.json()["confirmed_at"] is not None
    assert sender.templates() == ["booking_confirmation"]

    again = client.post(f"/reservations/{pending.id}/approve", headers=auth(owner))
    assert again.status_code == 400
    assert again.json()["detail"]["code"] == "InvalidStateTransition"


def test_owner_rejects_with_reason(client, db, owner, consumer):
    space = make_space(db, owner, type="free")
    pending = make_reservation(db, space, consumer, at(10), at(12), status="pending_approval", total=0)

    res = client.post(
        f"/reservations/{pending.id}/reject", json={"reason": "Closed for maintenance"}, headers=auth(owner)
    )

    assert res.status_code == 200
    assert res.json()["status"] == "rejected"
    assert res.json()["rejection_reason"] == "Closed for maintenance"


def test_guest_cancels_own_pending_reservation(client, db, owner, consumer):
    space = make_space(db, owner)
    pending = make_reservation(db, space, consumer, at(10), at(12), status="pending_payment")
    stranger = make_user(db, role="consumer")

    denied = client.post(f"/reservations/{pending.id}/cancel", headers=auth(stranger))
    assert denied.status_code == 403

    res = client.post(
        f"/reservations/{pending.id}/cancel", json={"reason": "Plans changed"}, headers=auth(consumer)
    )
    assert res.status_code == 200
    assert res.json()["status"] == "cancelled"
    assert res.json()["cancellation_reason"] == "Plans changed"
    assert res.json()["cancelled_at"] is not None


@pytest.mark.parametrize("status", ["confirmed", "checked_in", "completed"])
def test_guest_cannot_cancel_after_confirmation(client, db, owner, consumer, status):
    space = make_space(db, owner)
    reservation = make_reservation(db, space, consumer, at(10), at(12), status=status)

    res = client.post(f"/reservations/{reservation.id}/cancel", headers=auth(consumer))

    assert res.status_code == 400
    assert res.json()["detail"]["code"] == "InvalidStateTransition"
    db.expire_all()
    assert reservation.status == status


def test_staff_checks_guest_in_and_out(client, db, owner, consumer):
    space = make_space(db, owner)
    staff = make_user(db, role="staff", brand_id=owner.id)
    confirmed = make_reservation(db, space, consumer, at(10), at(12))

    res = client.post(f"/reservations/{confirmed.id}/check-in", headers=auth(staff))
    assert res.status_code == 200
    assert res.json()["status"] == "checked_in"
    assert res.json()["check_in_time"] is not None

    res = client.post(f"/reservations/{confirmed.id}/check-out", headers=auth(staff))
    assert res.status_code == 200
    assert res.json()["status"] == "completed"
    assert res.json()["check_out_time"] is not None


def test_staff_of_other_brand_cannot_check_in(client, db, owner, consumer):
    space = make_space(db, owner)
    other_owner = make_user(db, role="brand_owner")
    outsider = make_user(db, role="staff", brand_id=other_owner.id)
    confirmed = make_reservation(db, space, consumer, at(10), at(12))

    res = client.post(f"/reservations/{confirmed.id}/check-in", headers=auth(outsider))

    assert res.status_code == 403


def test_check_out_requires_check_in(client, db, owner, consumer):
    space = make_space(db, owner)
    confirmed = make_reservation(db, space, consumer, at(10), at(12))

    res = client.post(f"/reservations/{confirmed.id}/check-out", headers=auth(owner))

    assert res.status_code == 400


def test_owner_marks_no_show(client, db, owner, consumer):
    space = make_space(db, owner)
    confirmed = make_reservation(db, space, consumer, at(10), at(12))

    res = client.post(f"/reservations/{confirmed.id}/no-show", headers=auth(owner))

    assert res.status_code == 200
    assert res.json()["status"] == "no_show"


# ---------------------------------------------------------------------
# READS
# ---------------------------------------------------------------------
def test_reservation_visibility(client, db, owner, consumer, admin):
    space = make_space(db, owner)
    reservation = make_reservation(db, space, consumer, at(10), at(12))
    stranger = make_user(db, role="consumer")

    assert client.get(f"/reservations/{reservation.id}", headers=auth(consumer)).status_code == 200
    assert client.get(f"/reservations/{reservation.id}", headers=auth(owner)).status_code == 200
    assert client.get(f"/reservations/{reservation.id}", headers=auth(admin)).status_code == 200
    assert client.get(f"/reservations/{reservation.id}", headers=auth(stranger)).status_code == 403

    by_code = client.get(f"/reservations/by-code/{reservation.booking_code}", headers=auth(consumer))
    assert by_code.json()["id"] == reservation.id


def test_calendar_export(client, db, owner, consumer):
    space = make_space(db, owner)
    reservation = make_reservation(db, space, consumer, at(10), at(12))
    stranger = make_user(db, role="consumer")

    res = client.get(f"/reservations/{reservation.id}/ics", headers=auth(consumer))

    assert res.status_code == 200
    assert res.headers["content-type"].startswith("text/calendar")
    assert res.headers["content-disposition"] == (
        f'attachment; filename="booking-{reservation.booking_code}.ics"'
    )

    event = Calendar.from_ical(res.content).walk("VEVENT")[0]
    assert event["dtstart"].dt == at(10).replace(tzinfo=business_tz())
    assert event["dtend"].dt == at(12).replace(tzinfo=business_tz())
    assert str(event["summary"]) == "Booking at Studio A"
    assert str(event["description"]) == f"Booking code: {reservation.booking_code}"
    assert str(event["location"]) == "12 MG Road"
    assert str(event["attendee"]) == f"MAILTO:{consumer.email}"
    assert event.walk("VALARM")[0]["trigger"].dt == timedelta(hours=-1)

    assert client.get(f"/reservations/{reservation.id}/ics", headers=auth(owner)).status_code == 200
    assert client.get(f"/reservations/{reservation.id}/ics", headers=auth(stranger)).status_code == 403


def test_listings(client, db, owner, consumer):
    space = make_space(db, owner)
    staff = make_user(db, role="staff", brand_id=owner.id)
    make_reservation(db, space, consumer, at(10), at(12))
    make_reservation(db, space, consumer, at(14), at(16), status="pending_payment")

    mine = client.get("/reservations/my", headers=auth(consumer)).json()
    assert [r["start_time"][11:16] for r in mine] == ["14:00", "10:00"]

    owned = client.get(
        "/reservations/space-owner", params={"status": "confirmed"}, headers=auth(owner)
    ).json()
    assert len(owned) == 1

    staffed = client.get("/reservations/staff", params={"date": "2030-01-07"}, headers=auth(staff))
    assert len(staffed.json()) == 2

    assert client.get("/reservations/space-owner", headers=auth(consumer)).status_code == 403


# ---------------------------------------------------------------------
# CONCURRENCY
# ---------------------------------------------------------------------
def test_concurrent_requests_create_one_reservation(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'race.db'}", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    Session = sessionmaker(bind=engine, autocommit=False, autoflush=False)

    setup = Session()
    owner = make_user(setup, role="brand_owner")
    guest = make_user(setup, role="consumer")
    space = make_space(setup, owner)
    space_id, guest_id = space.id, guest.id
    setup.close()

    data = ReservationCreate(space_id=space_id, start_time=at(10), end_time=at(12))
    barrier = threading.Barrier(4)
    created, conflicts, errors = [], [], []

    def attempt():
        session = Session()
        try:
            user = session.get(User, guest_id)
            barrier.wait()
            created.append(reservations.create_reservation(session, user, data).id)
        except Conflict:
            conflicts.append(True)
        except Exception as e:  # noqa: BLE001
            errors.append(e)
        finally:
            session.close()

    threads = [threading.Thread(target=attempt) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert len(created) == 1
    assert len(conflicts) == 3
    engine.dispose()
