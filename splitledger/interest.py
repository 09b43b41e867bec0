"""Simple daily interest, computed on read and never written back."""

from datetime import datetime

from splitledger.models import Balance, InterestSetting
from splitledger.money import add_months, days_between

DAYS_PER_YEAR = 365


def accrued_interest(
    base_amount: int,
    annual_rate: float,
    start_date: datetime,
    now: datetime | None = None,
) -> int:
    """Interest in cents accrued on base_amount since start_date.

    Truncates rather than rounds so the result never exceeds the exact
    continuous value. Returns 0 while now is before start_date.
    """
    if now is None:
        now = datetime.utcnow()
    if now < start_date:
        return 0

    days = days_between(start_date, now)
    daily_rate = annual_rate / DAYS_PER_YEAR
    return int(base_amount * daily_rate * days)


def interest_start_date(
    settings: InterestSetting | None,
    now: datetime,
) -> datetime | None:
    """Start date stamped on a newly created balance row."""
    if settings is None or not settings.enable_interest:
        return None
    if settings.interest_start_months is None:
        return None
    return add_months(now, settings.interest_start_months)


def interest_start_for(balance: Balance, settings: InterestSetting) -> datetime | None:
    """The date interest starts on for an existing balance.

    Rows without their own start date (created before interest was enabled,
    or by a settlement) fall back to updated_at plus the grace period.
    """
    if balance.interest_start_date is not None:
        return balance.interest_start_date
    if balance.updated_at is None:
        return None
    return add_months(balance.updated_at, settings.interest_start_months or 0)


def annotate_balance(
    balance: Balance,
    settings: InterestSetting | None,
    now: datetime | None = None,
) -> dict:
    if now is None:
        now = datetime.utcnow()

    interest = 0
    if settings is not None and settings.enable_interest and settings.interest_rate:
        start = interest_start_for(balance, settings)
        if start is not None and now >= start:
            interest = accrued_interest(balance.base_amount, settings.interest_rate, start, now)

    return {
        "accruedInterest": interest,
        "totalAmount": balance.base_amount + interest,
        "interestRate": settings.interest_rate if settings else None,
        "enableInterest": bool(settings and settings.enable_interest),
    }
