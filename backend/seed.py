"""
Startup seeding - indexes and default HR policy

Document prefixes are never seeded: allocation refuses to run until an
operator has saved them (PUT /api/settings/documents).
"""
import logging
from datetime import datetime, timezone
from pymongo import ASCENDING, DESCENDING
from models.payroll import HRSettings

logger = logging.getLogger(__name__)


async def ensure_indexes(db):
    await db.purchase_docs.create_index([("id", ASCENDING)], unique=True)
    await db.purchase_docs.create_index([("doc_no", DESCENDING)], unique=True)
    await db.documents.create_index([("id", ASCENDING)], unique=True)
    await db.documents.create_index([("doc_type", ASCENDING), ("doc_no", DESCENDING)], unique=True)
    await db.document_counters.create_index([("id", ASCENDING)], unique=True)
    await db.payslips.create_index([("id", ASCENDING)], unique=True)
    await db.attendance.create_index([("user_id", ASCENDING), ("timestamp", ASCENDING)])
    await db.hr_leaves.create_index([("user_id", ASCENDING), ("year", ASCENDING), ("status", ASCENDING)])
    await db.hr_attendance_adjustments.create_index([("user_id", ASCENDING), ("date", ASCENDING)])


async def seed_database(db) -> dict:
    await ensure_indexes(db)

    existing = await db.settings.find_one({"type": "hr"})
    if existing:
        return {"message": "Indexes ensured, HR settings already present"}

    await db.settings.insert_one({
        "type": "hr",
        **HRSettings().model_dump(mode="json"),
        "updated_at": datetime.now(timezone.utc).isoformat(),
    })
    logger.info("Default HR settings created")
    return {"message": "Indexes ensured, default HR settings created"}
