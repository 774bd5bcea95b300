"""Storage layer: asyncpg pool shared by the durable cache tier and the member pipeline."""

from forum_tracker.storage.database import DB_ERRORS, Database, DatabaseNotConfiguredError

__all__ = ["DB_ERRORS", "Database", "DatabaseNotConfiguredError"]
