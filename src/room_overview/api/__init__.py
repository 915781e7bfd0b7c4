"""HTTP surface: HTML overview, iCalendar feeds and the JSON sync API."""

from room_overview.api.app import create_app

__all__ = ["create_app"]
