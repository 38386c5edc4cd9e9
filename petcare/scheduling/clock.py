from datetime import datetime, timezone


def utcnow():
    """Naive UTC now, the convention every stored datetime follows"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_utc_naive(value):
    """Normalize an aware datetime to naive UTC; naive values are assumed UTC already"""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)
