"""room-overview: mirror ChurchTools room bookings and republish them as HTML and iCalendar."""

__version__ = "0.3.0"
