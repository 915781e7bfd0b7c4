"""Tests for the overview builder and the iCalendar renderer."""

from __future__ import annotations

from datetime import UTC, datetime
from zoneinfo import ZoneInfo

import pytest
from icalendar import Calendar

from room_overview.config import RoomConfig
from room_overview.models import BookingSnapshot
from room_overview.rendering import booking_uid, build_overview, render_ics

pytestmark = pytest.mark.unit

BERLIN = ZoneInfo("Europe/Berlin")
ROOMS = [
    RoomConfig(churchtools_id=10, name="Saal", location_hint="EG"),
    RoomConfig(churchtools_id=11, name="Jugendraum"),
]


class TestBuildOverview:
    def test_lists_todays_remaining_bookings_in_local_time(self, make_booking):
        snapshot = BookingSnapshot.of(
            [
                make_booking(booking_id=1, start="06:00", end="07:00"),  # ended
                make_booking(booking_id=2, start="08:00", end="10:00"),  # in progress
                make_booking(booking_id=3, resource_id=11, start="17:00", end="19:00"),
                make_booking(booking_id=4, resource_id=99, start="12:00", end="13:00"),
                # 23:30 UTC is 00:30 tomorrow in Berlin
                make_booking(booking_id=5, start="23:30", end="23:45"),
            ]
        )
        now = datetime(2026, 3, 2, 9, tzinfo=UTC)

        entries = build_overview(snapshot, ROOMS, now, BERLIN)

        assert [e.booking_id for e in entries] == [2, 3]
        first = entries[0]
        assert first.in_progress is True
        assert first.room.name == "Saal"
        assert first.start_time.utcoffset().total_seconds() == 3600
        assert first.start_time.hour == 9
        assert entries[1].in_progress is False
        assert entries[1].room.name == "Jugendraum"

    def test_empty_snapshot(self):
        assert build_overview(BookingSnapshot(), ROOMS, datetime.now(UTC), BERLIN) == []


class TestRenderIcs:
    def _parse(self, payload: bytes) -> Calendar:
        return Calendar.from_ical(payload)

    def test_calendar_properties(self):
        dtstamp = datetime(2026, 3, 2, 8, tzinfo=UTC)
        cal = self._parse(render_ics([], ROOMS, calendar_name="Gemeindehaus", dtstamp=dtstamp))

        assert str(cal["version"]) == "2.0"
        assert str(cal["method"]) == "PUBLISH"
        assert str(cal["x-wr-calname"]) == "Gemeindehaus"
        assert list(cal.walk("VEVENT")) == []

    def test_one_event_per_booking(self, make_booking):
        dtstamp = datetime(2026, 3, 2, 8, tzinfo=UTC)
        bookings = [
            make_booking(booking_id=7, title="Choir", start="18:00", end="20:00"),
            make_booking(booking_id=8, title="Youth", resource_id=11),
        ]

        cal = self._parse(render_ics(bookings, ROOMS, calendar_name="x", dtstamp=dtstamp))
        events = {str(e["uid"]): e for e in cal.walk("VEVENT")}

        assert set(events) == {booking_uid(7), booking_uid(8)}
        choir = events["booking-7@room-overview"]
        assert str(choir["summary"]) == "Choir"
        assert str(choir["location"]) == "Saal - EG"
        assert choir.decoded("dtstart") == datetime(2026, 3, 2, 18, tzinfo=UTC)
        assert choir.decoded("dtend") == datetime(2026, 3, 2, 20, tzinfo=UTC)
        assert choir.decoded("dtstamp") == dtstamp
        assert str(events[booking_uid(8)]["location"]) == "Jugendraum"

    def test_unknown_room_has_no_location(self, make_booking):
        booking = make_booking(booking_id=1, resource_id=99)
        payload = render_ics(
            [booking], ROOMS, calendar_name="x", dtstamp=datetime(2026, 3, 2, tzinfo=UTC)
        )
        (event,) = self._parse(payload).walk("VEVENT")
        assert "location" not in event

    def test_times_are_serialized_in_utc(self, make_booking):
        payload = render_ics(
            [make_booking(start="09:00", end="10:00")],
            ROOMS,
            calendar_name="x",
            dtstamp=datetime(2026, 3, 2, tzinfo=UTC),
        )
        assert b"DTSTART:20260302T090000Z" in payload
        assert b"DTEND:20260302T100000Z" in payload
