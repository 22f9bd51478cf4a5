"""
Declarative base for all ORM entities.

Tables are created and altered only by SQL migrations under
backend/migrations/; metadata here is never used for create_all() outside
tests, and services.schema_check compares it against the live database.
"""
from datetime import timezone

from sqlalchemy import DateTime
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.types import TypeDecorator


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware timestamp that always comes back in UTC.

    PostgreSQL keeps the offset; SQLite stores naive text, so values are
    normalised to UTC on the way in and tagged as UTC on the way out.
    """
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None and value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class Base(DeclarativeBase):
    pass
