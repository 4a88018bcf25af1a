# samplechain/utils.py

from datetime import datetime, timezone

import pytz
from flask import current_app


def utcnow():
    """Naive UTC timestamp, the form every DateTime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def format_timestamp(timestamp):
    """Convert a stored UTC timestamp to the configured lab timezone.

    Args:
        timestamp: naive UTC datetime object

    Returns:
        str: ISO-8601 string in the lab timezone, or None
    """
    if timestamp is None:
        return None
    lab_tz = pytz.timezone(current_app.config.get('TIMEZONE', 'UTC'))
    return pytz.utc.localize(timestamp).astimezone(lab_tz).isoformat()


def isoformat(value):
    return value.isoformat() if value is not None else None
