# Error Codes System for the business-ops backend
# รหัสข้อผิดพลาด

from datetime import datetime, timezone
import uuid

class ErrorCode:
    """Unified error codes: (code, message_en, message_th)"""

    # Document numbering (6xxx)
    DOC_SETTINGS_MISSING = ("E6001", "Document settings not found. Configure document prefixes first.", "ไม่พบการตั้งค่าเอกสาร กรุณาตั้งค่าคำนำหน้าเลขที่เอกสารก่อน")
    DOC_PREFIX_MISSING = ("E6002", "No prefix configured for this document type", "ยังไม่ได้ตั้งค่าคำนำหน้าสำหรับเอกสารประเภทนี้")
    DOC_SEQUENCE_EXHAUSTED = ("E6003", "Could not find a free document number", "ไม่สามารถหาเลขที่เอกสารที่ว่างได้")
    DOC_DUPLICATE_NO = ("E6004", "Document number already used for this document type", "เลขที่เอกสารนี้ถูกใช้ไปแล้วสำหรับเอกสารประเภทนี้")
    DOC_INVALID_DATE = ("E6005", "Invalid document date", "วันที่เอกสารไม่ถูกต้อง")

    # Payroll (7xxx)
    PAYROLL_EMPLOYEE_NOT_FOUND = ("E7001", "Employee not found", "ไม่พบพนักงาน")
    PAYROLL_NO_PAY_TYPE = ("E7002", "Employee has no pay type configured", "พนักงานยังไม่ได้ตั้งค่าประเภทการจ่ายเงินเดือน")
    PAYROLL_INVALID_PERIOD = ("E7003", "Invalid pay period", "งวดการจ่ายไม่ถูกต้อง")
    PAYROLL_NO_DAILY_RATE = ("E7004", "Daily wage is not configured", "ยังไม่ได้ตั้งค่าแรงรายวัน")
    PAYROLL_SLIP_LOCKED = ("E7005", "Payslip is already finalized", "สลิปเงินเดือนนี้ปิดงวดแล้ว")

    # General Errors (9xxx)
    GENERAL_NOT_FOUND = ("E9001", "Resource not found", "ไม่พบข้อมูล")
    GENERAL_STORE_UNAVAILABLE = ("E9002", "Database temporarily unavailable", "ฐานข้อมูลไม่พร้อมใช้งานชั่วคราว")
    GENERAL_VALIDATION_ERROR = ("E9004", "Validation error", "ข้อมูลไม่ถูกต้อง")


def create_error_response(error_code: tuple, details: str = None):
    """
    Build the unified error payload

    Args:
        error_code: tuple of (code, message_en, message_th)
        details: extra detail for the operator

    Returns:
        dict: error payload
    """
    code, msg_en, msg_th = error_code

    # unique reference for support
    error_id = f"{code}-{datetime.now(timezone.utc).strftime('%Y%m%d%H%M%S')}-{uuid.uuid4().hex[:6].upper()}"

    return {
        "error": True,
        "error_code": code,
        "error_id": error_id,
        "message": msg_en,
        "message_th": msg_th,
        "details": details,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "support_message": f"If this error persists, contact support with reference: {error_id}",
    }


def format_error_message(error_code: tuple, details: str = None) -> dict:
    """Wrap the payload the way HTTPException expects it"""
    response = create_error_response(error_code, details)
    return {
        "detail": response
    }
