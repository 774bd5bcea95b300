"""Process-lifetime wiring of the cache, scheduler and tenant pipeline."""

from forum_tracker.services.container import ServiceContainer

__all__ = ["ServiceContainer"]
