from datetime import datetime, timedelta, timezone
from typing import Tuple

from bson import ObjectId
from bson.errors import InvalidId

from propchat.utils.exceptions import InvalidInputError


# Mongo stores naive UTC datetimes at millisecond precision; every timestamp we
# write is already in that shape so values read back compare equal.
_EPOCH = datetime(1970, 1, 1)
_MS = timedelta(milliseconds=1)


def utcnow() -> datetime:
    now = datetime.now(timezone.utc).replace(tzinfo=None)
    return now.replace(microsecond=now.microsecond // 1000 * 1000)


def to_epoch_ms(ts: datetime) -> int:
    if ts.tzinfo is not None:
        ts = ts.astimezone(timezone.utc).replace(tzinfo=None)
    return (ts - _EPOCH) // _MS


def from_epoch_ms(ms: int) -> datetime:
    return _EPOCH + timedelta(milliseconds=ms)


def as_aware(ts: datetime) -> datetime:
    return ts.replace(tzinfo=timezone.utc) if ts.tzinfo is None else ts


def encode_cursor(ts: datetime, oid) -> str:
    # cursor format: ts_ms:oid
    return f"{to_epoch_ms(ts)}:{oid}"


def decode_cursor(cursor: str) -> Tuple[datetime, ObjectId]:
    try:
        ts_str, oid_hex = cursor.split(":", 1)
        return from_epoch_ms(int(ts_str)), ObjectId(oid_hex)
    except (ValueError, InvalidId, OverflowError):
        raise InvalidInputError(f"Malformed cursor: {cursor!r}", field="cursor")


def parse_object_id(value: str, field: str = "id") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    if not isinstance(value, str) or not ObjectId.is_valid(value):
        raise InvalidInputError(f"Invalid {field}: {value!r}", field=field)
    return ObjectId(value)
