"""
Social Security (SSO) helpers - ประกันสังคม

monthly contribution = clamp(salary, min_base, cap) × percent / 100
"""
import math
from typing import Optional


def round2(value: float, decimals: int = 2) -> float:
    """Half-up rounding to `decimals` places (money)"""
    factor = 10 ** decimals
    return math.floor(value * factor + 0.5) / factor


def clamp_sso_base(salary_monthly: float, min_base: float = 0, cap: Optional[float] = None) -> float:
    """Salary base for the contribution, between min_base and cap (no cap when unset)"""
    base = salary_monthly
    if cap:
        base = min(base, cap)
    return max(min_base or 0, base)


def calc_sso_monthly(
    salary_monthly: float,
    percent: float,
    min_base: float = 0,
    cap: Optional[float] = None
) -> float:
    if not salary_monthly or salary_monthly <= 0 or not percent or percent <= 0:
        return 0.0
    base = clamp_sso_base(salary_monthly, min_base, cap)
    return round2(base * (percent / 100))
