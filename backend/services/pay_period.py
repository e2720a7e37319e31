"""
Pay periods - two per month

period 1: period1_start .. period1_end   (default 1..15)
period 2: period2_start .. end of month  (default 16..28/29/30/31)
"""
import calendar
from datetime import date
from typing import Optional
from models.payroll import PayPeriod, PayrollPolicy


def resolve_pay_period(year: int, month: int, period_no: int, policy: Optional[PayrollPolicy] = None) -> PayPeriod:
    if period_no not in (1, 2):
        raise ValueError(f"period_no must be 1 or 2, got {period_no}")
    if not 1 <= month <= 12:
        raise ValueError(f"month must be 1..12, got {month}")

    policy = policy or PayrollPolicy()
    last_day = calendar.monthrange(year, month)[1]

    if period_no == 1:
        start_day, end_day = policy.period1_start, policy.period1_end
    else:
        start_day, end_day = policy.period2_start, last_day

    start_day = min(max(1, start_day), last_day)
    end_day = min(max(start_day, end_day), last_day)
    return PayPeriod(start=date(year, month, start_day), end=date(year, month, end_day))


def payroll_batch_id(year: int, month: int, period_no: int) -> str:
    return f"{year:04d}-{month:02d}-{period_no}"


def is_second_half(period: PayPeriod) -> bool:
    """Once-a-month items (SSO) go on the period ending after the 20th"""
    return period.end.day > 20
