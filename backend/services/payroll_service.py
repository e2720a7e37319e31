"""
Payroll Service - loads raw records and drafts payslips

The period metrics engine is pure; everything that touches MongoDB lives here:
- HR settings  : settings {"type": "hr"}
- holidays     : hr_holidays {date: "YYYY-MM-DD", name}
- leaves       : hr_leaves (approved, whole calendar year)
- punches      : attendance {user_id, type, timestamp}
- adjustments  : hr_attendance_adjustments {user_id, date, type, adjusted_in, adjusted_out}
- payslips     : payslips {id: "<YYYY-MM-N>_<user_id>", snapshot, status, revision_no}

Drafting keeps the manual lines of an existing draft and replaces every [AUTO] line.
"""
import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Dict, List, Optional
from database import db
from models.payroll import (
    PayType, Employee, HRSettings, PayPeriod, LeaveRequest, AttendancePunch, AttendanceAdjustment,
)
from services.pay_period import resolve_pay_period, payroll_batch_id
from services.period_metrics import compute_period_metrics, AUTO_PREFIX, BUSINESS_TZ
from services.sso import round2
from utils.error_codes import ErrorCode

logger = logging.getLogger(__name__)

LOCKED_PAYSLIP_STATUSES = ("FINAL", "PAID")


class PayrollError(Exception):
    def __init__(self, error_code: tuple, details: str = None):
        self.error_code = error_code
        self.details = details
        super().__init__(details or error_code[1])


# ============================================================
# Loaders
# ============================================================

async def load_hr_settings() -> HRSettings:
    doc = await db.settings.find_one({"type": "hr"}, {"_id": 0})
    if not doc:
        logger.warning("HR settings not found, using defaults")
        return HRSettings()
    return HRSettings.model_validate(doc)


async def load_holidays(start: date, end: date) -> Dict[str, str]:
    docs = await db.hr_holidays.find(
        {"date": {"$gte": start.isoformat(), "$lte": end.isoformat()}},
        {"_id": 0}
    ).to_list(1000)
    return {str(d["date"])[:10]: d.get("name", "") for d in docs if d.get("date")}


async def load_employee(user_id: str) -> Employee:
    doc = await db.users.find_one({"id": user_id}, {"_id": 0})
    if not doc:
        raise PayrollError(ErrorCode.PAYROLL_EMPLOYEE_NOT_FOUND, user_id)
    return Employee.model_validate(doc)


async def load_approved_leaves(user_id: str, year: int) -> List[LeaveRequest]:
    docs = await db.hr_leaves.find(
        {"user_id": user_id, "year": year, "status": "APPROVED"},
        {"_id": 0}
    ).to_list(1000)
    return [LeaveRequest.model_validate(d) for d in docs]


async def load_punches(user_id: str, start: date, end: date) -> List[AttendancePunch]:
    # business-local day boundaries
    lower = datetime.combine(start, time.min, tzinfo=BUSINESS_TZ).astimezone(timezone.utc)
    upper = datetime.combine(end + timedelta(days=1), time.min, tzinfo=BUSINESS_TZ).astimezone(timezone.utc)
    docs = await db.attendance.find(
        {"user_id": user_id, "timestamp": {"$gte": lower, "$lt": upper}},
        {"_id": 0}
    ).to_list(10000)
    return [AttendancePunch.model_validate(d) for d in docs]


async def load_adjustments(user_id: str, start: date, end: date) -> List[AttendanceAdjustment]:
    docs = await db.hr_attendance_adjustments.find(
        {"user_id": user_id, "date": {"$gte": start.isoformat(), "$lte": end.isoformat()}},
        {"_id": 0}
    ).to_list(1000)
    return [AttendanceAdjustment.model_validate(d) for d in docs]


# ============================================================
# Metrics
# ============================================================

async def build_period_metrics(
    user_id: str,
    year: int,
    month: int,
    period_no: int,
    today: Optional[date] = None
) -> dict:
    """
    Period metrics plus year-to-date metrics for one employee.

    Returns:
        dict: {user, period, metrics, metrics_ytd}
    """
    hr_settings = await load_hr_settings()
    try:
        period = resolve_pay_period(year, month, period_no, hr_settings.payroll)
    except ValueError as e:
        raise PayrollError(ErrorCode.PAYROLL_INVALID_PERIOD, str(e))

    user = await load_employee(user_id)
    if not user.hr.pay_type:
        raise PayrollError(ErrorCode.PAYROLL_NO_PAY_TYPE, user_id)

    today = today or datetime.now(BUSINESS_TZ).date()
    ytd = PayPeriod(start=date(year, 1, 1), end=period.end)

    holidays = await load_holidays(ytd.start, ytd.end)
    leaves = await load_approved_leaves(user_id, year)
    punches = await load_punches(user_id, ytd.start, ytd.end)
    adjustments = await load_adjustments(user_id, ytd.start, ytd.end)

    common = dict(
        user=user,
        pay_type=user.hr.pay_type,
        hr_settings=hr_settings,
        holidays=holidays,
        approved_leaves_this_year=leaves,
        attendance_punches=punches,
        adjustments=adjustments,
        today=today,
    )
    metrics = compute_period_metrics(period=period, **common)
    metrics_ytd = compute_period_metrics(period=ytd, **common)

    return {"user": user, "period": period, "metrics": metrics, "metrics_ytd": metrics_ytd}


# ============================================================
# Payslip drafts
# ============================================================

def calc_totals(snapshot: dict) -> dict:
    base_pay = snapshot.get("base_pay") or 0
    add_total = sum(a.get("amount") or 0 for a in snapshot.get("additions", []))
    ded_total = sum(d.get("amount") or 0 for d in snapshot.get("deductions", []))
    return {
        "base_pay": round2(base_pay),
        "add_total": round2(add_total),
        "ded_total": round2(ded_total),
        "net_pay": round2(base_pay + add_total - ded_total),
    }


def _is_manual(line: dict) -> bool:
    return not (line.get("name") or "").startswith(AUTO_PREFIX)


async def create_payslip_draft(
    user_id: str,
    year: int,
    month: int,
    period_no: int,
    today: Optional[date] = None
) -> dict:
    """
    Build (or rebuild) the draft payslip of an employee for a pay period.

    base pay: half the monthly salary per period, or daily wage × payable units;
    an existing draft keeps its base pay
    """
    result = await build_period_metrics(user_id, year, month, period_no, today)
    user = result["user"]
    period = result["period"]
    metrics = result["metrics"]
    metrics_ytd = result["metrics_ytd"]

    if user.hr.pay_type == PayType.DAILY:
        if not user.hr.salary_daily or user.hr.salary_daily <= 0:
            raise PayrollError(ErrorCode.PAYROLL_NO_DAILY_RATE, user_id)
        base_pay = round2(user.hr.salary_daily * metrics.attendance_summary.payable_units)
    else:
        base_pay = round2((user.hr.salary_monthly or 0) / 2)

    batch_id = payroll_batch_id(year, month, period_no)
    slip_id = f"{batch_id}_{user_id}"

    existing = await db.payslips.find_one({"id": slip_id}, {"_id": 0})
    if existing and existing.get("status") in LOCKED_PAYSLIP_STATUSES:
        raise PayrollError(ErrorCode.PAYROLL_SLIP_LOCKED, slip_id)
    previous = (existing or {}).get("snapshot") or {}
    if previous.get("base_pay") is not None:
        # HR edits to base pay survive a redraft
        base_pay = previous["base_pay"]

    snapshot = {
        "base_pay": base_pay,
        "additions": [a for a in previous.get("additions", []) if _is_manual(a)],
        "deductions": [d for d in previous.get("deductions", []) if _is_manual(d)]
                      + [d.model_dump() for d in metrics.auto_deductions],
        "attendance_summary": metrics.attendance_summary.model_dump(mode="json"),
        "leave_summary": metrics.leave_summary.model_dump(mode="json"),
        "attendance_summary_ytd": metrics_ytd.attendance_summary.model_dump(mode="json"),
        "leave_summary_ytd": metrics_ytd.leave_summary.model_dump(mode="json"),
        "calc_notes": metrics.calc_notes,
    }
    snapshot["net_pay"] = calc_totals(snapshot)["net_pay"]

    now = datetime.now(timezone.utc).isoformat()
    payslip = {
        "id": slip_id,
        "batch_id": batch_id,
        "user_id": user_id,
        "user_name": user.display_name,
        "pay_type": user.hr.pay_type.value,
        "period_start": period.start.isoformat(),
        "period_end": period.end.isoformat(),
        "status": "DRAFT",
        "snapshot": snapshot,
        "revision_no": (existing.get("revision_no", 0) + 1) if existing else 1,
        "updated_at": now,
    }
    await db.payslips.update_one(
        {"id": slip_id},
        {"$set": payslip, "$setOnInsert": {"created_at": now}},
        upsert=True
    )
    logger.info(f"Payslip draft {slip_id} rev {payslip['revision_no']}: net {snapshot['net_pay']}")
    return payslip
