"""Timestamp helpers for outgoing log documents."""

import logging
from datetime import datetime, timedelta, timezone

logger = logging.getLogger(__name__)

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def to_iso(dt: datetime) -> str:
    """Format a datetime as a UTC ISO-8601 instant with millisecond precision."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt = dt.astimezone(timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def now_iso() -> str:
    return to_iso(datetime.now(timezone.utc))


def _from_epoch_millis(value: float) -> datetime:
    return EPOCH + timedelta(milliseconds=value)


def _parse_time(value) -> datetime | None:
    if isinstance(value, (int, float)):
        return _from_epoch_millis(value)

    try:
        return datetime.fromisoformat(value.strip())
    except ValueError:
        return None


def compute_timestamp(value) -> str:
    """Return the ``@timestamp`` for a decoded log value.

    A ``time`` field that is a non-empty string or a non-negative number is
    converted to an ISO-8601 instant (numbers are epoch milliseconds).
    Anything else, including a string that cannot be parsed, yields the
    current time.
    """
    if isinstance(value, dict) and "time" in value:
        time_value = value["time"]
        usable = (isinstance(time_value, str) and len(time_value) > 0) or (
            isinstance(time_value, (int, float))
            and not isinstance(time_value, bool)
            and time_value >= 0
        )
        if usable:
            try:
                parsed = _parse_time(time_value)
                if parsed is not None:
                    return to_iso(parsed)
            except (OverflowError, OSError, ValueError) as exc:
                logger.debug("Time value %r out of range: %s", time_value, exc)
                return now_iso()
            logger.debug("Unparseable time value %r, using current time", time_value)
    return now_iso()
