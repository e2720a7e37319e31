"""
Payroll Period Metrics Engine - สรุปการทำงานประจำงวด

Pure computation, no I/O. The caller loads everything beforehand:
- attendance punches and adjustments inside the pay period
- approved leave requests of the whole calendar year (entitlement is annual)

Per-day order of checks (days up to min(period.end, today)):
1. excluded  -> before HR start / after HR end / holiday / weekend
2. leave     -> full day: 1.0 leave unit, done
                half day: 0.5 leave unit, other half checked below
3. attendance (MONTHLY, DAILY only; MONTHLY_NOSCAN assumes presence)
   - no clock-in              -> remaining capacity absent
   - clock-in after cutoff    -> half of remaining absent, half payable
   - clock-in after grace     -> late, minutes from work start, payable
   - otherwise                -> payable
   - clock-in without clock-out on a past day -> warning

Each day yields one DayOutcome; outcomes are folded into the
AttendanceSummary. Money lines are built from the folded totals.

Nothing in here raises on data problems: gaps become warnings or calc notes.
"""
import os
import math
from functools import reduce
from datetime import date, datetime, time, timedelta
from typing import Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo
from models.payroll import (
    PayType, WeekendMode, OverLimitMode, LeaveType, LeaveStatus, HalfDaySession,
    PunchType, AdjustmentType, DayKind,
    Employee, AttendancePunch, AttendanceAdjustment, LeaveRequest, HRSettings, PayPeriod,
    AttendanceDayLog, DayOutcome, AttendanceSummary, LeaveSummary, PayslipDeduction, PeriodMetrics,
)
from services.pay_period import is_second_half
from services.sso import calc_sso_monthly, round2

BUSINESS_TZ = ZoneInfo(os.environ.get('BUSINESS_TZ', 'Asia/Bangkok'))

DEFAULT_DEDUCTION_BASE_DAYS = 26
WORK_HOURS_PER_DAY = 8
AUTO_PREFIX = "[AUTO]"

SCANNED_PAY_TYPES = (PayType.MONTHLY, PayType.DAILY)
SSO_PAY_TYPES = (PayType.MONTHLY, PayType.MONTHLY_NOSCAN)


def _parse_hhmm(value: Optional[str], fallback: str) -> time:
    try:
        hours, minutes = (value or fallback).split(":")[:2]
        return time(int(hours), int(minutes))
    except (ValueError, TypeError):
        hours, minutes = fallback.split(":")
        return time(int(hours), int(minutes))


def _local(ts: datetime) -> datetime:
    # naive timestamps are already business-local
    if ts.tzinfo is None:
        return ts.replace(tzinfo=BUSINESS_TZ)
    return ts.astimezone(BUSINESS_TZ)


def _at(day: date, t: time) -> datetime:
    return datetime.combine(day, t, tzinfo=BUSINESS_TZ)


def _units(value: float) -> str:
    return f"{value:g}"


def round_half_units(value: float) -> float:
    """Nearest 0.5, halves rounded up: 0.25 -> 0.5, 0.75 -> 1.0"""
    return math.floor(value * 2 + 0.5) / 2


# ============================================================
# Day context - period-wide inputs indexed by date
# ============================================================

class DayContext:
    def __init__(
        self,
        user: Employee,
        pay_type: PayType,
        hr_settings: HRSettings,
        holidays: Dict[str, str],
        leaves: List[LeaveRequest],
        punches: List[AttendancePunch],
        adjustments: List[AttendanceAdjustment],
        today: date
    ):
        self.pay_type = PayType(pay_type)
        self.today = today
        self.hr_start = user.hr.start_date
        self.hr_end = user.hr.end_date
        self.weekend_mode = hr_settings.weekend_policy.mode or WeekendMode.SAT_SUN
        self.work_start = _parse_hhmm(hr_settings.work_start, "08:00")
        self.grace = timedelta(minutes=hr_settings.grace_minutes or 0)
        self.absent_cutoff = _parse_hhmm(hr_settings.absent_cutoff_time, "09:00")
        self.holidays = {str(k)[:10]: name for k, name in (holidays or {}).items()}

        self.leaves = sorted(
            (l for l in leaves if l.status == LeaveStatus.APPROVED and l.user_id == user.id),
            key=lambda l: l.start_date
        )

        self.ins: Dict[date, List[datetime]] = {}
        self.outs: Dict[date, List[datetime]] = {}
        for punch in punches:
            if punch.user_id != user.id:
                continue
            ts = _local(punch.timestamp)
            target = self.ins if punch.type == PunchType.IN else self.outs
            target.setdefault(ts.date(), []).append(ts)

        self.adjustments: Dict[date, AttendanceAdjustment] = {}
        for adj in adjustments:
            if adj.user_id and adj.user_id != user.id:
                continue
            self.adjustments.setdefault(adj.date, adj)

    def exclusion_reason(self, day: date) -> Optional[str]:
        if self.hr_start and day < self.hr_start:
            return "before employment start"
        if self.hr_end and day > self.hr_end:
            return "after employment end"
        if day.isoformat() in self.holidays:
            return f"holiday: {self.holidays[day.isoformat()]}"
        weekday = day.weekday()
        if self.weekend_mode == WeekendMode.SAT_SUN and weekday in (5, 6):
            return "weekend"
        if self.weekend_mode == WeekendMode.SUN_ONLY and weekday == 6:
            return "weekend"
        return None

    def leave_on(self, day: date) -> Optional[LeaveRequest]:
        for leave in self.leaves:
            if leave.start_date <= day <= leave.end_date:
                return leave
        return None

    def adjustment_on(self, day: date) -> Optional[AttendanceAdjustment]:
        return self.adjustments.get(day)

    def clock_times(self, day: date) -> Tuple[Optional[datetime], Optional[datetime]]:
        """first IN / last OUT of the day, ADD_RECORD times win"""
        first_in = min(self.ins[day]) if day in self.ins else None
        last_out = max(self.outs[day]) if day in self.outs else None

        adj = self.adjustment_on(day)
        if adj and adj.type == AdjustmentType.ADD_RECORD:
            if adj.adjusted_in:
                first_in = _local(adj.adjusted_in)
            if adj.adjusted_out:
                last_out = _local(adj.adjusted_out)
        return first_in, last_out


# ============================================================
# Per-day evaluation
# ============================================================

def _leave_detail(leave: LeaveRequest) -> str:
    detail = f"{leave.leave_type.value} leave"
    if leave.is_single_half_day:
        session = leave.half_day_session.value if leave.half_day_session else "HALF"
        detail += f" (half day, {session})"
    return f"{detail}: {leave.reason or '-'}"


def evaluate_day(day: date, ctx: DayContext) -> DayOutcome:
    """Outcome of one calendar day; never raises"""
    day_str = day.isoformat()

    if ctx.exclusion_reason(day):
        return DayOutcome(date=day, kind=DayKind.EXCLUDED, scheduled=False)

    logs = []
    leave = ctx.leave_on(day)
    leave_units = 0.0
    leave_type = None
    if leave:
        leave_units = 0.5 if leave.is_single_half_day else 1.0
        leave_type = leave.leave_type
        logs.append(AttendanceDayLog(date=day_str, type=DayKind.LEAVE, detail=_leave_detail(leave)))
        if leave_units == 1.0:
            return DayOutcome(
                date=day, kind=DayKind.LEAVE, leave_units=1.0, leave_type=leave_type,
                payable_units=1.0, logs=logs
            )

    remaining = 1.0 - leave_units
    morning_leave = bool(leave and leave.half_day_session == HalfDaySession.MORNING)

    if ctx.pay_type not in SCANNED_PAY_TYPES:
        return DayOutcome(
            date=day, kind=DayKind.PRESENT, leave_units=leave_units, leave_type=leave_type,
            payable_units=leave_units + remaining, logs=logs
        )

    first_in, last_out = ctx.clock_times(day)
    kind = DayKind.PRESENT
    payable = leave_units
    absent = 0.0
    late_minutes = 0
    warnings = []

    if first_in is None:
        kind = DayKind.ABSENT
        absent = remaining
        detail = "absent (no clock-in for the remaining half)" if leave_units else "absent (no clock-in)"
        logs.append(AttendanceDayLog(date=day_str, type=DayKind.ABSENT, detail=detail))
    else:
        cutoff = _at(day, ctx.absent_cutoff)
        if first_in > cutoff and not morning_leave:
            kind = DayKind.ABSENT
            absent = remaining * 0.5
            payable += remaining * 0.5
            logs.append(AttendanceDayLog(
                date=day_str, type=DayKind.ABSENT,
                detail=f"morning absence (clock-in {first_in:%H:%M} after cutoff {ctx.absent_cutoff:%H:%M})"
            ))
        else:
            work_start = _at(day, ctx.work_start)
            adj = ctx.adjustment_on(day)
            forgiven = adj is not None and adj.type == AdjustmentType.FORGIVE_LATE
            if not morning_leave and first_in > work_start + ctx.grace and not forgiven:
                kind = DayKind.LATE
                late_minutes = int((first_in - work_start).total_seconds() // 60)
                logs.append(AttendanceDayLog(
                    date=day_str, type=DayKind.LATE,
                    detail=f"late {late_minutes} min (clock-in {first_in:%H:%M})"
                ))
            payable += remaining

        if last_out is None and day < ctx.today:
            warnings.append(f"{day_str}: clock-in without clock-out, needs HR correction")

    return DayOutcome(
        date=day, kind=kind, leave_units=leave_units, leave_type=leave_type,
        payable_units=payable, absent_units=absent, late_minutes=late_minutes,
        logs=logs, warnings=warnings
    )


def period_days(period: PayPeriod, today: date) -> List[date]:
    """Calendar days of the period up to today; future days are never evaluated"""
    last = min(period.end, today)
    days = []
    day = period.start
    while day <= last:
        days.append(day)
        day += timedelta(days=1)
    return days


# ============================================================
# Folding
# ============================================================

def apply_outcome(state: AttendanceSummary, outcome: DayOutcome) -> AttendanceSummary:
    """Next summary state after one day; absent units stay unrounded here"""
    if not outcome.scheduled:
        return state
    is_late = outcome.kind == DayKind.LATE
    return state.model_copy(update={
        "scheduled_work_days": state.scheduled_work_days + 1,
        "leave_days": state.leave_days + outcome.leave_units,
        "payable_units": state.payable_units + outcome.payable_units,
        "absent_units": state.absent_units + outcome.absent_units,
        "late_days": state.late_days + (1 if is_late else 0),
        "late_minutes": state.late_minutes + outcome.late_minutes,
        "warnings": state.warnings + outcome.warnings,
        "day_logs": state.day_logs + outcome.logs,
    })


def finalize_summary(state: AttendanceSummary) -> AttendanceSummary:
    absent = round_half_units(state.absent_units)
    present = max(0, state.scheduled_work_days - state.leave_days - math.floor(absent))
    return state.model_copy(update={"absent_units": absent, "present_days": present})


def fold_outcomes(outcomes: List[DayOutcome]) -> Tuple[AttendanceSummary, float]:
    """(final summary, unrounded absent units for money)"""
    state = reduce(apply_outcome, outcomes, AttendanceSummary())
    return finalize_summary(state), state.absent_units


def leave_summary_of(outcomes: List[DayOutcome]) -> LeaveSummary:
    summary = LeaveSummary()
    for outcome in outcomes:
        if outcome.leave_type == LeaveType.SICK:
            summary.sick_days += outcome.leave_units
        elif outcome.leave_type == LeaveType.BUSINESS:
            summary.business_days += outcome.leave_units
        elif outcome.leave_type == LeaveType.VACATION:
            summary.vacation_days += outcome.leave_units
    return summary


# ============================================================
# Over-limit leave
# ============================================================

def over_limit_days_in_period(leaves: List[LeaveRequest], entitlement: float, period: PayPeriod) -> float:
    """
    Walk the year's leaves of one type in date order, keeping a running
    total. Units past the entitlement are over-limit; only those dated
    inside the pay period are returned.
    """
    taken = 0.0
    over = 0.0
    for leave in sorted(leaves, key=lambda l: l.start_date):
        units = 0.5 if leave.is_single_half_day else 1.0
        day = leave.start_date
        while day <= leave.end_date:
            taken += units
            if taken > entitlement:
                overage = min(units, taken - entitlement)
                if period.start <= day <= period.end:
                    over += overage
            day += timedelta(days=1)
    return over


def _over_limit_lines(
    user: Employee,
    hr_settings: HRSettings,
    leaves: List[LeaveRequest],
    period: PayPeriod
) -> Tuple[float, List[PayslipDeduction], List[str]]:
    total_over = 0.0
    deductions = []
    notes = []
    salary = user.hr.salary_monthly

    for leave_type in LeaveType:
        policy = hr_settings.leave_policy.leave_types.get(leave_type)
        if not policy or not policy.annual_entitlement:
            continue

        of_type = [
            l for l in leaves
            if l.leave_type == leave_type and l.status == LeaveStatus.APPROVED and l.user_id == user.id
        ]
        over = over_limit_days_in_period(of_type, policy.annual_entitlement, period)
        if over <= 0:
            continue
        total_over += over

        mode = policy.over_limit_handling.mode
        if mode in (OverLimitMode.DEDUCT_SALARY, OverLimitMode.UNPAID):
            if salary:
                base_days = (
                    policy.over_limit_handling.salary_deduction_base_days
                    or hr_settings.payroll.salary_deduction_base_days
                    or DEFAULT_DEDUCTION_BASE_DAYS
                )
                deductions.append(PayslipDeduction(
                    name=f"{AUTO_PREFIX} Over-limit leave ({leave_type.value})",
                    amount=round2(salary / base_days * over),
                    notes=f"{_units(over)} day(s)"
                ))
            else:
                notes.append(
                    f"Warning: {leave_type.value} leave over entitlement by {_units(over)} day(s) "
                    f"but no monthly salary is set; deduct manually"
                )
        elif mode == OverLimitMode.DISALLOW:
            notes.append(
                f"Warning: {leave_type.value} leave over entitlement by {_units(over)} day(s) "
                f"but the policy does not allow a salary deduction"
            )
        else:
            notes.append(
                f"Warning: {leave_type.value} leave over entitlement by {_units(over)} day(s) "
                f"and no over-limit handling is configured"
            )

    return total_over, deductions, notes


# ============================================================
# Entry point
# ============================================================

def compute_period_metrics(
    user: Employee,
    pay_type: PayType,
    period: PayPeriod,
    hr_settings: HRSettings,
    holidays: Dict[str, str],
    approved_leaves_this_year: List[LeaveRequest],
    attendance_punches: List[AttendancePunch],
    adjustments: List[AttendanceAdjustment],
    today: date
) -> PeriodMetrics:
    """
    Attendance/leave summary and automatic deductions of one employee for one pay period.

    Args:
        holidays: {"YYYY-MM-DD": name}
        approved_leaves_this_year: leave requests of the calendar year (non-approved are ignored)
        attendance_punches / adjustments: records inside the period
        today: days after today are not evaluated

    Returns:
        PeriodMetrics
    """
    pay_type = PayType(pay_type)
    ctx = DayContext(
        user, pay_type, hr_settings, holidays,
        approved_leaves_this_year, attendance_punches, adjustments, today
    )

    outcomes = [evaluate_day(day, ctx) for day in period_days(period, today)]
    attendance_summary, raw_absent_units = fold_outcomes(outcomes)
    leave_summary = leave_summary_of(outcomes)

    over_limit, auto_deductions, notes = _over_limit_lines(user, hr_settings, approved_leaves_this_year, period)
    leave_summary.over_limit_days = over_limit

    salary = user.hr.salary_monthly
    base_days = hr_settings.payroll.salary_deduction_base_days or DEFAULT_DEDUCTION_BASE_DAYS

    if pay_type == PayType.MONTHLY and salary:
        day_rate = salary / base_days
        minute_rate = day_rate / WORK_HOURS_PER_DAY / 60
        if raw_absent_units > 0:
            auto_deductions.append(PayslipDeduction(
                name=f"{AUTO_PREFIX} Absence",
                amount=round2(day_rate * raw_absent_units),
                notes=f"{_units(raw_absent_units)} unit(s)"
            ))
        if attendance_summary.late_minutes > 0:
            auto_deductions.append(PayslipDeduction(
                name=f"{AUTO_PREFIX} Late arrival",
                amount=round2(minute_rate * attendance_summary.late_minutes),
                notes=f"{attendance_summary.late_minutes} min"
            ))

    if pay_type in SSO_PAY_TYPES and salary and is_second_half(period):
        sso = hr_settings.sso
        amount = calc_sso_monthly(salary, sso.employee_percent, sso.monthly_min_base, sso.monthly_cap)
        if amount > 0:
            auto_deductions.append(PayslipDeduction(
                name=f"{AUTO_PREFIX} Social security (SSO)",
                amount=amount,
                notes=f"{_units(sso.employee_percent)}% of monthly salary"
            ))

    return PeriodMetrics(
        attendance_summary=attendance_summary,
        leave_summary=leave_summary,
        auto_deductions=auto_deductions,
        calc_notes="\n".join(notes).strip()
    )
