from datetime import datetime, timedelta, timezone

from icalendar import Alarm, Calendar, Event, vCalAddress, vText

from app.core.config import settings
from app.utils.timeutils import local_to_utc

PRODID = "-//Space Booking//Reservations//EN"
REMINDER_BEFORE = timedelta(hours=1)


def calendar_filename(reservation) -> str:
    return f"booking-{reservation.booking_code}.ics"


def _attendee(user) -> vCalAddress:
    attendee = vCalAddress(f"MAILTO:{user.email}")
    attendee.params["cn"] = vText(user.name)
    attendee.params["role"] = vText("REQ-PARTICIPANT")
    attendee.params["partstat"] = vText("ACCEPTED")
    attendee.params["rsvp"] = vText("TRUE")
    return attendee


def reservation_calendar(reservation) -> bytes:
    """One VEVENT for the reservation with a display reminder an hour before."""
    space = reservation.space

    event = Event()
    event.add("uid", f"{reservation.booking_code}@space-booking")
    event.add("dtstamp", datetime.now(timezone.utc))
    event.add("dtstart", local_to_utc(reservation.start_time))
    event.add("dtend", local_to_utc(reservation.end_time))
    event.add("summary", f"Booking at {space.name}")
    event.add("description", f"Booking code: {reservation.booking_code}")
    event.add("location", space.address)
    event.add("status", "CONFIRMED")
    event.add("categories", ["Booking"])

    organizer = vCalAddress(f"MAILTO:{settings.calendar_organizer_email}")
    organizer.params["cn"] = vText("Space Booking")
    event.add("organizer", organizer, encode=0)
    event.add("attendee", _attendee(reservation.user), encode=0)

    alarm = Alarm()
    alarm.add("action", "DISPLAY")
    alarm.add("description", "Booking Reminder")
    alarm.add("trigger", -REMINDER_BEFORE)
    event.add_component(alarm)

    calendar = Calendar()
    calendar.add("prodid", PRODID)
    calendar.add("version", "2.0")
    calendar.add("method", "PUBLISH")
    calendar.add_component(event)
    return calendar.to_ical()
