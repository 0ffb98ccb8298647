"""REST-API für Scheduler, Status und Kontakte."""

from whatsched.api.routes import create_app

__all__ = ["create_app"]
