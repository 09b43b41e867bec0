"""Integer-cent and calendar helpers shared by the ledger and interest code."""

import calendar
from datetime import datetime

SECONDS_PER_DAY = 86400


def distribute_evenly(total: int, count: int) -> list[int]:
    """Split total cents into count parts that sum exactly to total.

    The first total % count parts get one extra cent.
    """
    base = total // count
    remainder = total - base * count
    return [base + (1 if i < remainder else 0) for i in range(count)]


def allocate_by_weight(total: int, weights: list[float]) -> list[int]:
    """Split total cents proportionally to weights (largest remainder).

    Every part is floored, then the leftover cents go one at a time to the
    parts with the largest fractional remainder, earlier parts first on ties.
    No part is ever negative and the parts sum exactly to total.
    """
    total_weight = sum(weights)
    if total_weight <= 0:
        return [0 for _ in weights]

    exact = [total * weight / total_weight for weight in weights]
    result = [int(value) for value in exact]
    leftover = total - sum(result)

    by_remainder = sorted(range(len(weights)), key=lambda i: (-(exact[i] - result[i]), i))
    for i in by_remainder[:leftover]:
        result[i] += 1
    return result


def days_between(start: datetime, end: datetime) -> int:
    """Whole days elapsed from start to end, floored."""
    return int((end - start).total_seconds() // SECONDS_PER_DAY)


def add_months(moment: datetime, months: int) -> datetime:
    """Shift a datetime by whole calendar months.

    The day is clamped to the last day of the target month, so Jan 31 + 1
    month is Feb 28 (or 29).
    """
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)
