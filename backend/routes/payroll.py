"""
Payroll API - period metrics and payslip drafts
"""
from fastapi import APIRouter, HTTPException
from pydantic import BaseModel
from typing import Optional
from datetime import date
from database import db
from services.payroll_service import build_period_metrics, create_payslip_draft, PayrollError
from services.payslip_text import format_payslip_text
from utils.error_codes import ErrorCode, format_error_message

router = APIRouter(prefix="/api/payroll", tags=["payroll"])


class PeriodRequest(BaseModel):
    user_id: str
    year: int
    month: int
    period: int  # 1 | 2
    today: Optional[date] = None


def _http_error(e: PayrollError) -> HTTPException:
    status = 404 if e.error_code == ErrorCode.PAYROLL_EMPLOYEE_NOT_FOUND else 400
    if e.error_code == ErrorCode.PAYROLL_SLIP_LOCKED:
        status = 409
    return HTTPException(status_code=status, **format_error_message(e.error_code, e.details))


@router.post("/period-metrics")
async def api_period_metrics(req: PeriodRequest):
    """Attendance/leave summary and [AUTO] deductions, nothing is saved"""
    try:
        result = await build_period_metrics(req.user_id, req.year, req.month, req.period, req.today)
    except PayrollError as e:
        raise _http_error(e)

    return {
        "user_id": req.user_id,
        "period": result["period"].model_dump(mode="json"),
        "metrics": result["metrics"].model_dump(mode="json"),
        "metrics_ytd": result["metrics_ytd"].model_dump(mode="json"),
    }


@router.post("/payslips")
async def api_create_payslip_draft(req: PeriodRequest):
    try:
        return await create_payslip_draft(req.user_id, req.year, req.month, req.period, req.today)
    except PayrollError as e:
        raise _http_error(e)


@router.get("/payslips/{slip_id}/text")
async def api_payslip_text(slip_id: str):
    payslip = await db.payslips.find_one({"id": slip_id}, {"_id": 0})
    if not payslip:
        raise HTTPException(status_code=404, **format_error_message(ErrorCode.GENERAL_NOT_FOUND, slip_id))

    period_label = f"{payslip.get('period_start')} - {payslip.get('period_end')}"
    text = format_payslip_text(payslip.get("user_name", ""), period_label, payslip.get("snapshot") or {})
    return {"id": slip_id, "text": text}
