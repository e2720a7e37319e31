"""
Plain-text copy of a payslip (for chat apps / clipboard)
"""
from services.payroll_service import calc_totals

LINE = "-" * 32


def _money(value) -> str:
    return f"{(value or 0):,.2f}"


def _section(title: str, lines: list) -> str:
    text = f"{title}\n"
    if lines:
        for item in lines:
            text += f"- {item.get('name')}: {_money(item.get('amount'))}\n"
    else:
        text += "- none -\n"
    return text


def format_payslip_text(user_name: str, period_label: str, snapshot: dict) -> str:
    totals = calc_totals(snapshot)
    attendance = snapshot.get("attendance_summary") or {}

    text = "PAYSLIP\n"
    text += f"{LINE}\n"
    text += f"Name: {user_name}\n"
    text += f"Period: {period_label}\n"
    text += f"{LINE}\n\n"
    text += f"Base pay: {_money(totals['base_pay'])}\n\n"
    text += _section("(+) Additions", snapshot.get("additions") or [])
    text += f"Total additions: {_money(totals['add_total'])}\n\n"
    text += _section("(-) Deductions", snapshot.get("deductions") or [])
    text += f"Total deductions: {_money(totals['ded_total'])}\n\n"

    if attendance:
        text += (
            f"Attendance: scheduled {attendance.get('scheduled_work_days', 0)}, "
            f"leave {attendance.get('leave_days', 0)}, "
            f"absent {attendance.get('absent_units', 0)}, "
            f"late {attendance.get('late_minutes', 0)} min\n\n"
        )

    text += f"{LINE}\n"
    text += f"NET PAY: {_money(totals['net_pay'])}\n"
    return text
