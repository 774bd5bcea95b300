"""HTTP API: health, cache status, topics and tenant pipeline triggers."""

from forum_tracker.api.app import create_app

__all__ = ["create_app"]
