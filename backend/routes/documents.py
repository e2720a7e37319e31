"""
Documents API - numbered business documents

POST /api/documents/{category}          allocate the next number and create
POST /api/documents/{category}/manual   backfill with a given number
GET  /api/documents/{category}/next     preview of the next number
GET  /api/documents/counters/{year}     counter fields of a fiscal year
"""
from fastapi import APIRouter, HTTPException
from datetime import datetime
from typing import Optional
from models.documents import DocCategory, DocumentCreate, DocumentBackfill
from services.sequence_allocator import (
    allocate_document,
    create_document_manual,
    get_year_counters,
    peek_next_doc_no,
    SequenceError, SequenceExhausted, DuplicateDocNo,
)
from services.period_metrics import BUSINESS_TZ
from utils.error_codes import format_error_message

router = APIRouter(prefix="/api/documents", tags=["documents"])


def _http_error(e: SequenceError) -> HTTPException:
    if isinstance(e, DuplicateDocNo):
        status = 409
    elif isinstance(e, SequenceExhausted):
        status = 503
    else:
        # missing settings, bad dates, validation
        status = 400
    return HTTPException(status_code=status, **format_error_message(e.error_code, e.details))


@router.get("/counters/{year}")
async def api_year_counters(year: int):
    return {"year": year, "counters": await get_year_counters(year)}


@router.post("/{category}")
async def api_create_document(category: DocCategory, req: DocumentCreate):
    try:
        doc_no = await allocate_document(
            category,
            req.doc_date,
            req.data,
            initial_status=req.initial_status,
            provided_doc_id=req.doc_id,
        )
    except SequenceError as e:
        raise _http_error(e)
    return {"doc_no": doc_no, "category": category.value}


@router.post("/{category}/manual")
async def api_backfill_document(category: DocCategory, req: DocumentBackfill):
    try:
        document = await create_document_manual(category, req.doc_no, req.doc_date, req.data)
    except SequenceError as e:
        raise _http_error(e)
    return document


@router.get("/{category}/next")
async def api_next_doc_no(category: DocCategory, doc_date: Optional[str] = None):
    try:
        doc_no = await peek_next_doc_no(category, doc_date or datetime.now(BUSINESS_TZ).date().isoformat())
    except SequenceError as e:
        raise _http_error(e)
    return {"doc_no": doc_no, "reserved": False}
