"""HTTP binding (FastAPI) of the widget and workspace operations."""

from sitebot.server.app import create_app

__all__ = ["create_app"]
