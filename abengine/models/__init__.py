"""SQLAlchemy models — portable across SQLite and PostgreSQL."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime
from sqlalchemy.types import TypeDecorator


def utcnow():
    return datetime.now(timezone.utc)


def new_uuid():
    return str(uuid.uuid4())


class UTCDateTime(TypeDecorator):
    """Aware UTC datetimes in Python, naive UTC in the database.

    SQLite drops tzinfo on the way back, so values are normalised on both
    sides and a row reads the same whichever session loaded it.
    """

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None and value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value


from abengine.models.ab_test import (  # noqa: E402
    ABTest,
    ABTestConversion,
    ABTestImpression,
    ABTestVariant,
)

__all__ = [
    "ABTest",
    "ABTestConversion",
    "ABTestImpression",
    "ABTestVariant",
    "UTCDateTime",
    "new_uuid",
    "utcnow",
]
