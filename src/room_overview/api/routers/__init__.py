"""Route modules mounted by :func:`room_overview.api.app.create_app`."""
