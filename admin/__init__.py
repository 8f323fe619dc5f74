"""Admin API of the freight auction backend (see ``admin.app.create_app``)."""
