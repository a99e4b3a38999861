from datetime import datetime, timedelta
from typing import Tuple


def day_bounds(moment: datetime) -> Tuple[datetime, datetime]:
    """Half-open [start, end) range of the calendar day containing ``moment``."""
    start = moment.replace(hour=0, minute=0, second=0, microsecond=0)
    return start, start + timedelta(days=1)


def month_bounds(moment: datetime) -> Tuple[datetime, datetime]:
    """Half-open [start, end) range of the calendar month containing ``moment``."""
    start = moment.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    if start.month == 12:
        end = start.replace(year=start.year + 1, month=1)
    else:
        end = start.replace(month=start.month + 1)
    return start, end


def reference_timestamp(moment: datetime) -> int:
    """Millisecond timestamp used in generated reference ids.

    Naive datetimes are treated as UTC.
    """
    if moment.tzinfo is None:
        return int((moment - EPOCH).total_seconds() * 1000)
    return int(moment.timestamp() * 1000)


EPOCH = datetime(1970, 1, 1)
