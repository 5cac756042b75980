from datetime import datetime, timezone
from typing import Annotated
from pydantic import AfterValidator


def utc_now() -> datetime:
    """Single point of timestamp assignment for every write."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Naive datetimes are taken to be UTC; aware ones are converted to it."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


UtcDateTime = Annotated[datetime, AfterValidator(ensure_utc)]
