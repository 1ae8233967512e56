"""
Timestamp helpers shared by the store and the continue-watching view.

Records carry ISO-8601 UTC timestamps with millisecond precision and a
trailing 'Z', the same shape the backend stores.
"""

from datetime import datetime, timedelta, timezone

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
ONE_MILLISECOND = timedelta(milliseconds=1)


def utcnow():
    return datetime.now(timezone.utc)


def format_timestamp(moment):
    """Render an aware (or naive UTC) datetime as '2024-05-01T12:00:00.000Z'."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    moment = moment.astimezone(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


def parse_timestamp(value):
    """
    Parse an ISO-8601 timestamp into an aware UTC datetime.

    Returns None when the value is missing or cannot be parsed. Naive values
    are taken to be UTC.
    """
    if isinstance(value, datetime):
        moment = value
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z") or text.endswith("z"):
            text = text[:-1] + "+00:00"
        try:
            moment = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None

    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def truncate_to_millis(moment):
    return moment.replace(microsecond=(moment.microsecond // 1000) * 1000)
