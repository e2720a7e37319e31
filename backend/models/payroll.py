"""
Payroll Model - inputs and outputs of the period metrics engine

Raw records (punches, adjustments, leave requests) are append-only facts
loaded by the caller. PeriodMetrics is derived and never stored on its own;
it is copied into a payslip snapshot.
"""
from enum import Enum
from datetime import date, datetime
from typing import Optional, List, Dict
from pydantic import BaseModel, Field


class PayType(str, Enum):
    MONTHLY = "MONTHLY"                 # salaried, scanning required
    MONTHLY_NOSCAN = "MONTHLY_NOSCAN"   # salaried, presence assumed
    DAILY = "DAILY"                     # paid per attendance unit


class WeekendMode(str, Enum):
    SAT_SUN = "SAT_SUN"
    SUN_ONLY = "SUN_ONLY"


class OverLimitMode(str, Enum):
    DEDUCT_SALARY = "DEDUCT_SALARY"
    UNPAID = "UNPAID"
    DISALLOW = "DISALLOW"


class LeaveType(str, Enum):
    SICK = "SICK"
    BUSINESS = "BUSINESS"
    VACATION = "VACATION"


class LeaveStatus(str, Enum):
    SUBMITTED = "SUBMITTED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"


class HalfDaySession(str, Enum):
    MORNING = "MORNING"
    AFTERNOON = "AFTERNOON"


class PunchType(str, Enum):
    IN = "IN"
    OUT = "OUT"


class AdjustmentType(str, Enum):
    ADD_RECORD = "ADD_RECORD"       # HR supplies missing/incorrect times
    FORGIVE_LATE = "FORGIVE_LATE"   # lateness waived for the date


class DayKind(str, Enum):
    """Outcome of a single calendar day"""
    EXCLUDED = "EXCLUDED"   # not scheduled (holiday, weekend, outside employment)
    LEAVE = "LEAVE"         # fully covered by leave
    PRESENT = "PRESENT"
    LATE = "LATE"
    ABSENT = "ABSENT"       # whole or partial absence


# ============================================================
# Employee & raw records
# ============================================================

class EmployeeHR(BaseModel):
    pay_type: Optional[PayType] = None
    salary_monthly: Optional[float] = None
    salary_daily: Optional[float] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None


class Employee(BaseModel):
    id: str
    display_name: str = ""
    hr: EmployeeHR = Field(default_factory=EmployeeHR)


class AttendancePunch(BaseModel):
    user_id: str
    type: PunchType
    timestamp: datetime


class AttendanceAdjustment(BaseModel):
    user_id: Optional[str] = None
    date: date
    type: AdjustmentType
    adjusted_in: Optional[datetime] = None
    adjusted_out: Optional[datetime] = None


class LeaveRequest(BaseModel):
    user_id: str
    leave_type: LeaveType
    start_date: date
    end_date: date
    is_half_day: bool = False
    half_day_session: Optional[HalfDaySession] = None
    status: LeaveStatus = LeaveStatus.SUBMITTED
    year: Optional[int] = None
    reason: Optional[str] = None

    @property
    def is_single_half_day(self) -> bool:
        # half-day only counts as half when it covers exactly one date
        return self.is_half_day and self.start_date == self.end_date


# ============================================================
# HR settings (singleton: settings {"type": "hr"})
# ============================================================

class WeekendPolicy(BaseModel):
    mode: WeekendMode = WeekendMode.SAT_SUN


class OverLimitHandling(BaseModel):
    mode: Optional[OverLimitMode] = None
    salary_deduction_base_days: Optional[float] = None


class LeaveTypePolicy(BaseModel):
    annual_entitlement: Optional[float] = None
    over_limit_handling: OverLimitHandling = Field(default_factory=OverLimitHandling)


class LeavePolicy(BaseModel):
    leave_types: Dict[LeaveType, LeaveTypePolicy] = Field(default_factory=dict)


class SSOPolicy(BaseModel):
    employee_percent: float = 0
    employer_percent: float = 0
    monthly_min_base: float = 0
    monthly_cap: Optional[float] = None


class PayrollPolicy(BaseModel):
    salary_deduction_base_days: float = 26
    period1_start: int = 1
    period1_end: int = 15
    period2_start: int = 16


class HRSettings(BaseModel):
    work_start: str = "08:00"           # HH:MM
    grace_minutes: int = 0
    absent_cutoff_time: str = "09:00"   # HH:MM
    weekend_policy: WeekendPolicy = Field(default_factory=WeekendPolicy)
    leave_policy: LeavePolicy = Field(default_factory=LeavePolicy)
    sso: SSOPolicy = Field(default_factory=SSOPolicy)
    payroll: PayrollPolicy = Field(default_factory=PayrollPolicy)


class PayPeriod(BaseModel):
    start: date
    end: date


# ============================================================
# Outputs
# ============================================================

class AttendanceDayLog(BaseModel):
    date: str  # YYYY-MM-DD
    type: DayKind
    detail: str


class DayOutcome(BaseModel):
    """What one calendar day contributed to the period"""
    date: date
    kind: DayKind
    scheduled: bool = True
    leave_units: float = 0
    leave_type: Optional[LeaveType] = None
    payable_units: float = 0
    absent_units: float = 0
    late_minutes: int = 0
    logs: List[AttendanceDayLog] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


class AttendanceSummary(BaseModel):
    scheduled_work_days: int = 0
    present_days: float = 0
    late_days: int = 0
    late_minutes: int = 0
    absent_units: float = 0
    leave_days: float = 0
    payable_units: float = 0
    warnings: List[str] = Field(default_factory=list)
    day_logs: List[AttendanceDayLog] = Field(default_factory=list)


class LeaveSummary(BaseModel):
    sick_days: float = 0
    business_days: float = 0
    vacation_days: float = 0
    over_limit_days: float = 0


class PayslipDeduction(BaseModel):
    name: str
    amount: float
    notes: Optional[str] = None


class PeriodMetrics(BaseModel):
    attendance_summary: AttendanceSummary
    leave_summary: LeaveSummary
    auto_deductions: List[PayslipDeduction] = Field(default_factory=list)
    calc_notes: str = ""
