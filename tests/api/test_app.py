"""Tests for the HTTP surface: overview page, iCalendar feeds and JSON API."""

from __future__ import annotations

import uuid

import httpx
import pytest
from fastapi import FastAPI
from icalendar import Calendar

pytestmark = pytest.mark.unit


def _events(resp: httpx.Response) -> dict[str, str]:
    cal = Calendar.from_ical(resp.content)
    return {str(e["uid"]): str(e["summary"]) for e in cal.walk("VEVENT")}


def _add_failing_routes(app: FastAPI) -> None:
    @app.get("/api/test/internal")
    async def raise_api_internal():
        raise RuntimeError("something broke")

    @app.get("/test/internal")
    async def raise_page_internal():
        raise RuntimeError("something broke")


# ---------------------------------------------------------------------------
# HTML overview
# ---------------------------------------------------------------------------


class TestLanding:
    async def test_lists_remaining_bookings_of_configured_rooms(self, client):
        resp = await client.get("/")

        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/html")
        body = resp.text
        assert "Gemeindehaus" in body
        assert "Choir" in body
        assert "10:00 &ndash; 11:00" in body
        assert "Youth" in body
        assert "Hidden" not in body
        assert "Early" not in body
        assert 'href="/ics/10.ics"' in body
        assert 'href="/ics/11.ics"' in body

    async def test_empty_day(self, client, api_store):
        api_store.rows = {}
        resp = await client.get("/")
        assert resp.status_code == 200
        assert "keine weiteren Veranstaltungen" in resp.text

    async def test_shows_last_successful_sync(self, client, scheduler):
        assert "Stand:" not in (await client.get("/")).text
        await scheduler.run_cycle()
        assert "Stand:" in (await client.get("/")).text

    async def test_serves_last_snapshot_while_store_is_down(self, client, api_store):
        assert (await client.get("/")).status_code == 200
        api_store.unavailable = True

        resp = await client.get("/")

        assert resp.status_code == 200
        assert "Choir" in resp.text

    async def test_stylesheet(self, client):
        resp = await client.get("/style.css")
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/css")


# ---------------------------------------------------------------------------
# iCalendar feeds
# ---------------------------------------------------------------------------


class TestIcsFeeds:
    async def test_all_rooms_feed(self, client):
        resp = await client.get("/ics/all.ics")

        assert resp.status_code == 200
        assert resp.headers["content-type"] == "text/calendar; charset=utf-8"
        assert resp.headers["x-snapshot-version"] == "0"
        assert 'filename="all.ics"' in resp.headers["content-disposition"]
        assert _events(resp) == {
            "booking-1@room-overview": "Choir",
            "booking-2@room-overview": "Youth",
            "booking-4@room-overview": "Early",
        }

    async def test_single_room_feed(self, client):
        resp = await client.get("/ics/11.ics")

        assert resp.status_code == 200
        assert _events(resp) == {"booking-2@room-overview": "Youth"}
        cal = Calendar.from_ical(resp.content)
        assert str(cal["x-wr-calname"]) == "Gemeindehaus - Jugendraum"

    async def test_feed_is_stable_for_an_unchanged_snapshot(self, client, scheduler):
        await scheduler.run_cycle()
        first = await client.get("/ics/all.ics")
        second = await client.get("/ics/all.ics")
        assert first.content == second.content

    async def test_feed_follows_new_snapshot(self, client, scheduler):
        await scheduler.run_cycle()
        resp = await client.get("/ics/all.ics")
        assert resp.headers["x-snapshot-version"] == "1"
        assert _events(resp) == {}

    @pytest.mark.parametrize("path", ["/ics/99.ics", "/ics/abc.ics", "/ics/-1.ics"])
    async def test_unknown_room_is_404_page(self, client, path):
        resp = await client.get(path)
        assert resp.status_code == 404
        assert resp.headers["content-type"].startswith("text/html")


# ---------------------------------------------------------------------------
# JSON API
# ---------------------------------------------------------------------------


class TestBookingsApi:
    async def test_defaults_to_configured_rooms(self, client):
        resp = await client.get("/api/bookings")

        assert resp.status_code == 200
        body = resp.json()
        assert body["meta"]["count"] == 3
        assert body["data"]["version"] == 0
        ids = [b["booking_id"] for b in body["data"]["bookings"]]
        assert ids == [4, 1, 2]

    async def test_filter_by_room(self, client):
        resp = await client.get("/api/bookings", params={"resource_id": [11, 99]})
        ids = [b["booking_id"] for b in resp.json()["data"]["bookings"]]
        assert ids == [3, 2]

    async def test_filter_by_window(self, client):
        resp = await client.get(
            "/api/bookings",
            params={"start": "2026-03-02T08:30:00Z", "end": "2026-03-02T12:00:00Z"},
        )
        bookings = resp.json()["data"]["bookings"]
        assert [b["booking_id"] for b in bookings] == [1]
        assert bookings[0]["title"] == "Choir"
        assert bookings[0]["start_time"].startswith("2026-03-02T09:00:00")

    async def test_start_without_end_is_400(self, client):
        resp = await client.get("/api/bookings", params={"start": "2026-03-02T08:30:00Z"})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "VALIDATION_ERROR"

    async def test_inverted_window_is_400(self, client):
        resp = await client.get(
            "/api/bookings",
            params={"start": "2026-03-02T12:00:00Z", "end": "2026-03-02T08:00:00Z"},
        )
        assert resp.status_code == 400

    async def test_unparsable_timestamp_is_422(self, client):
        resp = await client.get("/api/bookings", params={"start": "soon", "end": "later"})
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "VALIDATION_ERROR"

    async def test_store_unavailable_before_first_read_is_503(self, client, api_store):
        api_store.unavailable = True

        resp = await client.get("/api/bookings")

        assert resp.status_code == 503
        error = resp.json()["error"]
        assert error["code"] == "STORE_UNAVAILABLE"
        uuid.UUID(error["error_id"])


class TestSyncApi:
    async def test_health(self, client):
        resp = await client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}

    async def test_status_before_any_cycle(self, client):
        resp = await client.get("/api/sync/status")

        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["phase"] == "idle"
        assert data["running"] is False
        assert data["last_success_at"] is None
        assert data["consecutive_failures"] == 0

    async def test_status_after_cycle(self, client, scheduler):
        await scheduler.run_cycle()

        data = (await client.get("/api/sync/status")).json()["data"]

        assert data["snapshot_version"] == 1
        assert data["last_result"]["deleted"] == 4
        assert data["last_success_at"].startswith("2026-03-02T08:30:00")

    async def test_trigger(self, client, scheduler):
        resp = await client.post("/api/sync")

        assert resp.status_code == 202
        assert resp.json()["data"] == {"accepted": True, "running": False}
        assert scheduler._trigger_event.is_set()


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class TestErrors:
    async def test_unknown_page_is_html_404(self, client):
        resp = await client.get("/does-not-exist")
        assert resp.status_code == 404
        assert "Diese Seite gibt es nicht" in resp.text

    async def test_unknown_api_path_is_json_404(self, client):
        resp = await client.get("/api/does-not-exist")
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "NOT_FOUND"

    async def test_unhandled_api_error_is_json_500_with_error_id(self, app, client):
        _add_failing_routes(app)

        resp = await client.get("/api/test/internal")

        assert resp.status_code == 500
        error = resp.json()["error"]
        assert error["code"] == "INTERNAL_ERROR"
        assert "something broke" not in error["message"]
        uuid.UUID(error["error_id"])

    async def test_unhandled_page_error_shows_error_id(self, app, client):
        _add_failing_routes(app)

        resp = await client.get("/test/internal")

        assert resp.status_code == 500
        assert "Fehler-ID" in resp.text

    async def test_store_unavailable_page_is_503(self, client, api_store):
        api_store.unavailable = True
        resp = await client.get("/")
        assert resp.status_code == 503
        assert "Fehler-ID" in resp.text
