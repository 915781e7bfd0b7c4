"""Pure renderers turning a booking snapshot into overview rows and iCalendar feeds."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta, tzinfo
from datetime import time as dt_time

from icalendar import Calendar, Event

from room_overview.config import RoomConfig
from room_overview.models import Booking, BookingSnapshot

ICS_PRODID = "-//room-overview//ChurchTools room bookings//EN"
ICS_CONTENT_TYPE = "text/calendar; charset=utf-8"


@dataclass(frozen=True)
class OverviewEntry:
    """One row of the HTML overview, with times in the display timezone."""

    booking_id: int
    title: str
    start_time: datetime
    end_time: datetime
    room: RoomConfig
    in_progress: bool = False


def booking_uid(booking_id: int) -> str:
    return f"booking-{booking_id}@room-overview"


def build_overview(
    snapshot: BookingSnapshot,
    rooms: Sequence[RoomConfig],
    now: datetime,
    tz: tzinfo,
) -> list[OverviewEntry]:
    """Bookings of configured rooms that have not ended yet today, in start order."""
    rooms_by_id = {room.churchtools_id: room for room in rooms}
    local_now = now.astimezone(tz)
    day_end = datetime.combine(local_now.date() + timedelta(days=1), dt_time.min, tzinfo=tz)

    entries: list[OverviewEntry] = []
    for booking in snapshot.bookings:
        room = rooms_by_id.get(booking.resource_id)
        if room is None or booking.end_time <= now or booking.start_time >= day_end:
            continue
        entries.append(
            OverviewEntry(
                booking_id=booking.booking_id,
                title=booking.title,
                start_time=booking.start_time.astimezone(tz),
                end_time=booking.end_time.astimezone(tz),
                room=room,
                in_progress=booking.start_time <= now,
            )
        )
    return entries


def render_ics(
    bookings: Iterable[Booking],
    rooms: Sequence[RoomConfig],
    *,
    calendar_name: str,
    dtstamp: datetime,
) -> bytes:
    """Serialize *bookings* as an iCalendar document with one VEVENT each.

    ``UID`` is derived from the booking id, so calendar clients update events
    in place when a booking changes upstream.
    """
    rooms_by_id = {room.churchtools_id: room for room in rooms}

    cal = Calendar()
    cal.add("prodid", ICS_PRODID)
    cal.add("version", "2.0")
    cal.add("calscale", "GREGORIAN")
    cal.add("method", "PUBLISH")
    cal.add("x-wr-calname", calendar_name)

    for booking in bookings:
        event = Event()
        event.add("uid", booking_uid(booking.booking_id))
        event.add("dtstamp", dtstamp)
        event.add("summary", booking.title)
        event.add("dtstart", booking.start_time)
        event.add("dtend", booking.end_time)
        room = rooms_by_id.get(booking.resource_id)
        if room is not None:
            event.add("location", room.ics_location)
        event.add("status", "CONFIRMED")
        cal.add_component(event)

    return cal.to_ical()
