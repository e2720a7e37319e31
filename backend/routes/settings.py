"""
Settings API - document prefixes and HR policy

settings {"type": "documents"} : prefix per document category
settings {"type": "hr"}        : work hours, weekend, leave policy, SSO, payroll
"""
from fastapi import APIRouter, HTTPException
from datetime import datetime, timezone
from database import db
from models.documents import DocumentSettings
from models.payroll import HRSettings

router = APIRouter(prefix="/api/settings", tags=["settings"])


@router.get("/documents")
async def get_document_settings():
    """Prefix configuration; 404 until it has been saved once"""
    settings = await db.settings.find_one({"type": "documents"}, {"_id": 0})
    if not settings:
        raise HTTPException(status_code=404, detail="Document settings not configured")
    return settings


@router.put("/documents")
async def update_document_settings(body: DocumentSettings):
    """Only provided prefixes are changed"""
    now = datetime.now(timezone.utc).isoformat()

    update_data = {k: v.strip() for k, v in body.model_dump().items() if v is not None}
    update_data["type"] = "documents"
    update_data["updated_at"] = now

    await db.settings.update_one(
        {"type": "documents"},
        {"$set": update_data},
        upsert=True
    )
    return await db.settings.find_one({"type": "documents"}, {"_id": 0})


@router.get("/hr")
async def get_hr_settings():
    settings = await db.settings.find_one({"type": "hr"}, {"_id": 0})
    if not settings:
        # defaults, not saved
        return {"type": "hr", **HRSettings().model_dump(mode="json"), "updated_at": None}
    return settings


@router.put("/hr")
async def update_hr_settings(body: HRSettings):
    """Replaces the whole HR policy"""
    now = datetime.now(timezone.utc).isoformat()
    data = {"type": "hr", **body.model_dump(mode="json"), "updated_at": now}

    await db.settings.update_one({"type": "hr"}, {"$set": data}, upsert=True)
    return data
