"""
Sequence Allocator - running document numbers

Format: {prefix}{year}-{sequence:04d}  e.g. PUR2024-0006

Flow of one allocation:
1. normalize the fiscal year (Buddhist era years lose 543)
2. resolve the prefix from settings {"type": "documents"} - fail before any write
3. baseline = highest doc_no already stored for prefix+year (outside the transaction)
4. transaction: read counter -> next = max(counter, baseline) + 1
   -> skip numbers already taken -> insert document -> $set counter field
5. return doc_no

The counter record is shared by every category/prefix of the year:
    {"id": "2024", "year": 2024, "PURCHASE_PUR_count": 5, "RECEIPT_RC_count": 12}

session.with_transaction re-runs the whole body on transient write
conflicts, so the body only depends on what it reads inside the session.
"""
import os
import uuid
import logging
from datetime import date, datetime, timezone
from typing import Optional, Tuple, Union
from pymongo.errors import DuplicateKeyError
from database import db
from models.documents import (
    DocCategory, DocStatus, CounterKey,
    prefix_key_for, collection_for, initial_status_for,
)
from services.period_metrics import BUSINESS_TZ
from utils.error_codes import ErrorCode

logger = logging.getLogger(__name__)

COUNTERS_COLLECTION = "document_counters"
SEQUENCE_WIDTH = 4
BUDDHIST_ERA_OFFSET = 543
BUDDHIST_ERA_THRESHOLD = 2400

MAX_COLLISION_ATTEMPTS = int(os.environ.get('DOC_NO_MAX_COLLISION_ATTEMPTS', '50'))


class SequenceError(Exception):
    """Base error of the allocator, carries an ErrorCode tuple"""

    def __init__(self, error_code: tuple, details: str = None):
        self.error_code = error_code
        self.details = details
        super().__init__(details or error_code[1])


class DocumentSettingsMissing(SequenceError):
    pass


class SequenceExhausted(SequenceError):
    pass


class DuplicateDocNo(SequenceError):
    pass


class InvalidDocDate(SequenceError):
    pass


# ============================================================
# Pure helpers
# ============================================================

def normalize_fiscal_year(raw_year: int) -> int:
    """Buddhist era (e.g. 2567) -> Gregorian (2024); Gregorian passes through"""
    raw_year = int(raw_year)
    if raw_year > BUDDHIST_ERA_THRESHOLD:
        return raw_year - BUDDHIST_ERA_OFFSET
    return raw_year


def _business_date(moment: datetime) -> date:
    # aware timestamps count on the business-local calendar day
    if moment.tzinfo is not None:
        moment = moment.astimezone(BUSINESS_TZ)
    return moment.date()


def _as_date(doc_date: Union[str, date, datetime]) -> date:
    """
    Gregorian calendar date of doc_date.

    Strings may carry a Buddhist era year ("2567-02-29"); the year is
    converted before the date is built, so leap days of the Gregorian
    year are accepted and only Gregorian dates are ever stored.
    """
    if isinstance(doc_date, datetime):
        day = _business_date(doc_date)
    elif isinstance(doc_date, date):
        day = doc_date
    else:
        text = str(doc_date).strip()
        try:
            year = normalize_fiscal_year(int(text[:4]))
            text = f"{year:04d}{text[4:]}"
            if len(text) > 10:
                day = _business_date(datetime.fromisoformat(text.replace("Z", "+00:00")))
            else:
                day = date.fromisoformat(text)
        except ValueError:
            raise InvalidDocDate(ErrorCode.DOC_INVALID_DATE, f"doc_date={doc_date!r}")
        return day

    year = normalize_fiscal_year(day.year)
    if year != day.year:
        try:
            day = day.replace(year=year)
        except ValueError:
            raise InvalidDocDate(ErrorCode.DOC_INVALID_DATE, f"doc_date={doc_date!r}")
    return day


def fiscal_year_of(doc_date: Union[str, date, datetime]) -> int:
    return _as_date(doc_date).year


def format_doc_no(prefix: str, year: int, sequence: int) -> str:
    return f"{prefix}{year}-{sequence:0{SEQUENCE_WIDTH}d}"


def parse_sequence(doc_no: str, prefix: str, year: int) -> Optional[int]:
    """Numeric suffix of doc_no, None when it does not belong to prefix+year"""
    head = f"{prefix}{year}-"
    if not doc_no or not doc_no.startswith(head):
        return None
    tail = doc_no[len(head):]
    return int(tail) if tail.isdigit() else None


def _scope(category: DocCategory) -> dict:
    # shared collection: sequences are unique per doc_type only
    if collection_for(category) == "documents":
        return {"doc_type": category.value}
    return {}


# ============================================================
# Store reads
# ============================================================

async def resolve_prefix(category: DocCategory) -> str:
    """
    Prefix for the category from settings {"type": "documents"}.
    No silent default: an unconfigured prefix is a hard error.
    """
    category = DocCategory(category)
    settings = await db.settings.find_one({"type": "documents"}, {"_id": 0})
    if not settings:
        raise DocumentSettingsMissing(ErrorCode.DOC_SETTINGS_MISSING)

    key = prefix_key_for(category)
    prefix = (settings.get(key) or "").strip()
    if not prefix:
        raise DocumentSettingsMissing(ErrorCode.DOC_PREFIX_MISSING, f"{key} is not set")
    return prefix


async def find_collection_baseline(category: DocCategory, prefix: str, year: int, session=None) -> int:
    """
    Highest sequence already present on a stored document for prefix+year.
    Covers counters that were reset, deleted or left behind by a crash.
    """
    category = DocCategory(category)
    lower = f"{prefix}{year}-"
    upper = lower + "\uffff"

    cursor = db[collection_for(category)].find(
        {**_scope(category), "doc_no": {"$gte": lower, "$lte": upper}},
        {"_id": 0, "doc_no": 1},
        session=session
    ).sort("doc_no", -1).limit(1)
    docs = await cursor.to_list(1)

    if not docs:
        return 0
    return parse_sequence(docs[0].get("doc_no", ""), prefix, year) or 0


async def next_free_sequence(
    category: DocCategory,
    prefix: str,
    year: int,
    start: int,
    session=None,
    max_attempts: int = None
) -> Tuple[int, str]:
    """
    First sequence >= start whose doc_no is not stored yet.
    Advisory only; the counter + baseline are what keep numbers unique.
    """
    category = DocCategory(category)
    if max_attempts is None:
        max_attempts = MAX_COLLISION_ATTEMPTS
    collection = db[collection_for(category)]

    sequence = start
    for _ in range(max_attempts):
        doc_no = format_doc_no(prefix, year, sequence)
        taken = await collection.find_one(
            {**_scope(category), "doc_no": doc_no}, {"_id": 0, "id": 1}, session=session
        )
        if not taken:
            return sequence, doc_no
        logger.warning(f"doc_no {doc_no} already stored, skipping")
        sequence += 1

    logger.error(f"No free {category.value} number after {max_attempts} attempts from {format_doc_no(prefix, year, start)}")
    raise SequenceExhausted(
        ErrorCode.DOC_SEQUENCE_EXHAUSTED,
        f"{max_attempts} numbers taken starting at {format_doc_no(prefix, year, start)}"
    )


# ============================================================
# Allocation
# ============================================================

async def allocate_document(
    category: DocCategory,
    doc_date: Union[str, date, datetime],
    payload: dict,
    initial_status: Optional[DocStatus] = None,
    provided_doc_id: Optional[str] = None,
    max_attempts: int = None
) -> str:
    """
    Create a numbered document and bump its counter in one transaction.

    Args:
        category: document category
        doc_date: business date of the document, decides the fiscal year
        payload: business fields (id/doc_no/status/timestamps are overwritten)
        initial_status: defaults to the category's initial status
        provided_doc_id: retry key - if a document already has this id its
            doc_no is returned and nothing is written

    Returns:
        str: the document number
    """
    category = DocCategory(category)
    year = fiscal_year_of(doc_date)
    prefix = await resolve_prefix(category)
    key = CounterKey(category, prefix)
    status = DocStatus(initial_status) if initial_status else initial_status_for(category)
    collection = db[collection_for(category)]
    doc_id = provided_doc_id or str(uuid.uuid4())
    doc_date_str = _as_date(doc_date).isoformat()

    baseline = await find_collection_baseline(category, prefix, year)

    async def _create(session) -> Tuple[str, bool]:
        if provided_doc_id:
            existing = await collection.find_one({"id": doc_id}, {"_id": 0, "doc_no": 1}, session=session)
            if existing:
                return existing["doc_no"], False

        counter = await db[COUNTERS_COLLECTION].find_one({"id": str(year)}, {"_id": 0}, session=session) or {}
        current = int(counter.get(key.field) or 0)

        sequence, doc_no = await next_free_sequence(
            category, prefix, year, max(current, baseline) + 1,
            session=session, max_attempts=max_attempts
        )

        now = datetime.now(timezone.utc).isoformat()
        document = {
            **payload,
            "id": doc_id,
            "doc_no": doc_no,
            "doc_type": category.value,
            "doc_date": doc_date_str,
            "status": status.value,
            "created_at": now,
            "updated_at": now,
        }
        if status == DocStatus.PENDING_REVIEW:
            document["submitted_at"] = now

        await collection.insert_one(document, session=session)
        await db[COUNTERS_COLLECTION].update_one(
            {"id": str(year)},
            {"$set": {"year": year, key.field: sequence}},
            upsert=True,
            session=session
        )
        return doc_no, True

    async with await db.client.start_session() as session:
        doc_no, created = await session.with_transaction(_create)

    if created:
        logger.info(f"Allocated {doc_no} ({category.value}, id={doc_id}, baseline={baseline})")
    else:
        logger.info(f"Retry for id={doc_id} returned existing {doc_no}")
    return doc_no


async def create_document_manual(
    category: DocCategory,
    doc_no: str,
    doc_date: Union[str, date, datetime],
    payload: dict
) -> dict:
    """
    Backfill a document with an operator-supplied number.
    The counter is left alone; later allocations step past it through the baseline.
    """
    category = DocCategory(category)
    doc_no = (doc_no or "").strip()
    if not doc_no:
        raise SequenceError(ErrorCode.GENERAL_VALIDATION_ERROR, "doc_no is required")

    collection = db[collection_for(category)]
    if await collection.find_one({**_scope(category), "doc_no": doc_no}, {"_id": 0, "id": 1}):
        raise DuplicateDocNo(ErrorCode.DOC_DUPLICATE_NO, doc_no)

    now = datetime.now(timezone.utc).isoformat()
    document = {
        **payload,
        "id": str(uuid.uuid4()),
        "doc_no": doc_no,
        "doc_type": category.value,
        "doc_date": _as_date(doc_date).isoformat(),
        "status": DocStatus.DRAFT.value,
        "backfilled": True,
        "created_at": now,
        "updated_at": now,
    }
    try:
        await collection.insert_one(document)
    except DuplicateKeyError:
        raise DuplicateDocNo(ErrorCode.DOC_DUPLICATE_NO, doc_no)

    document.pop("_id", None)
    logger.info(f"Backfilled {doc_no} ({category.value})")
    return document


async def get_year_counters(year: int) -> dict:
    """Counter fields of the fiscal year: {"PURCHASE_PUR_count": 5, ...}"""
    year = normalize_fiscal_year(year)
    counter = await db[COUNTERS_COLLECTION].find_one({"id": str(year)}, {"_id": 0}) or {}
    return {k: v for k, v in counter.items() if k.endswith("_count")}


async def peek_next_doc_no(category: DocCategory, doc_date: Union[str, date, datetime]) -> str:
    """Preview of the next number. Not a reservation."""
    category = DocCategory(category)
    year = fiscal_year_of(doc_date)
    prefix = await resolve_prefix(category)
    counters = await get_year_counters(year)
    current = int(counters.get(CounterKey(category, prefix).field) or 0)
    baseline = await find_collection_baseline(category, prefix, year)
    return format_doc_no(prefix, year, max(current, baseline) + 1)
