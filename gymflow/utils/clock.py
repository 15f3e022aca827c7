"""Naive-UTC time helpers shared by models and services."""
from datetime import datetime, timezone


def utcnow():
    """Current UTC time as a naive datetime, matching the stored column values."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def start_of_day(moment):
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


def isoformat(value):
    return value.isoformat() if value else None
