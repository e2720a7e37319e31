"""
Sequence Allocator - running document numbers
Tests for:
1. Uniqueness under concurrent allocations
2. Baseline recovery when the counter is behind the stored documents
3. Idempotent retries with a caller supplied document id
4. Buddhist era years
5. Missing prefix configuration fails before any write
6. Collision skipping and exhaustion
7. Manual backfill
8. Counter record shared by several sequences
"""
import asyncio
import pytest
from datetime import date

import services.sequence_allocator as allocator
from models.documents import DocCategory, DocStatus, CounterKey
from services.sequence_allocator import (
    allocate_document,
    create_document_manual,
    next_free_sequence,
    peek_next_doc_no,
    get_year_counters,
    normalize_fiscal_year,
    fiscal_year_of,
    parse_sequence,
    format_doc_no,
    SequenceError,
    SequenceExhausted,
    DocumentSettingsMissing,
    DuplicateDocNo,
    InvalidDocDate,
)
from utils.error_codes import ErrorCode


@pytest.fixture
def configured_db(fake_db):
    asyncio.run(fake_db.settings.insert_one({
        "type": "documents",
        "purchase_prefix": "PUR",
        "receipt_prefix": "RC",
        "quotation_prefix": "QT",
    }))
    return fake_db


def _store(db, collection, doc_no, doc_type="PURCHASE"):
    asyncio.run(db[collection].insert_one({"id": f"seed-{doc_no}", "doc_no": doc_no, "doc_type": doc_type}))


class TestHelpers:
    def test_buddhist_year_is_converted(self):
        assert normalize_fiscal_year(2567) == 2024
        assert normalize_fiscal_year(2024) == 2024

    def test_format_and_parse(self):
        assert format_doc_no("PUR", 2024, 6) == "PUR2024-0006"
        assert parse_sequence("PUR2024-0006", "PUR", 2024) == 6
        assert parse_sequence("PUR2023-0006", "PUR", 2024) is None
        assert parse_sequence("PUR2024-X1", "PUR", 2024) is None

    def test_buddhist_leap_day(self):
        # 2567-02-29 is 2024-02-29; 2567 itself is not a Gregorian leap year
        assert fiscal_year_of("2567-02-29") == 2024
        assert fiscal_year_of(date(2567, 2, 28)) == 2024

    def test_buddhist_date_without_gregorian_leap_day(self):
        # 2568 = 2025, which has no February 29
        with pytest.raises(InvalidDocDate):
            fiscal_year_of("2568-02-29")

    def test_timestamp_counts_on_business_day(self):
        # 20:00 in New York on Dec 31 is already Jan 1 in Bangkok
        assert fiscal_year_of("2024-12-31T20:00:00-05:00") == 2025
        assert fiscal_year_of("2024-12-31T20:00:00") == 2024

    def test_counter_key_field(self):
        key = CounterKey("PURCHASE", "PUR")
        assert key == CounterKey(DocCategory.PURCHASE, "PUR")
        assert key.field == "PURCHASE_PUR_count"
        assert {key: 1}[CounterKey(DocCategory.PURCHASE, "PUR")] == 1


class TestAllocation:
    def test_first_number_of_the_year(self, configured_db):
        doc_no = asyncio.run(allocate_document(DocCategory.PURCHASE, "2024-03-01", {"vendor": "ACME"}))
        assert doc_no == "PUR2024-0001"

        stored = configured_db.purchase_docs.docs[0]
        assert stored["vendor"] == "ACME"
        assert stored["doc_type"] == "PURCHASE"
        assert stored["status"] == DocStatus.DRAFT.value
        assert stored["doc_date"] == "2024-03-01"

        counters = asyncio.run(get_year_counters(2024))
        assert counters == {"PURCHASE_PUR_count": 1}

    def test_concurrent_allocations_are_unique(self, configured_db):
        async def _many():
            return await asyncio.gather(*[
                allocate_document(DocCategory.PURCHASE, "2024-03-01", {"n": i}) for i in range(20)
            ])

        numbers = asyncio.run(_many())
        assert len(set(numbers)) == 20
        assert sorted(numbers) == [f"PUR2024-{i:04d}" for i in range(1, 21)]
        assert asyncio.run(get_year_counters(2024))["PURCHASE_PUR_count"] == 20

    def test_baseline_recovers_missing_counter(self, configured_db):
        for i in range(1, 6):
            _store(configured_db, "purchase_docs", f"PUR2024-{i:04d}")

        doc_no = asyncio.run(allocate_document(DocCategory.PURCHASE, "2024-06-01", {}))
        assert doc_no == "PUR2024-0006"
        assert asyncio.run(get_year_counters(2024))["PURCHASE_PUR_count"] == 6

    def test_baseline_wins_over_stale_counter(self, configured_db):
        for i in range(1, 6):
            _store(configured_db, "purchase_docs", f"PUR2024-{i:04d}")
        asyncio.run(configured_db.document_counters.insert_one(
            {"id": "2024", "year": 2024, "PURCHASE_PUR_count": 2}
        ))

        doc_no = asyncio.run(allocate_document(DocCategory.PURCHASE, "2024-06-01", {}))
        assert doc_no == "PUR2024-0006"

    def test_retry_with_same_id_returns_same_number(self, configured_db):
        first = asyncio.run(allocate_document(DocCategory.PURCHASE, "2024-03-01", {}, provided_doc_id="req-1"))
        second = asyncio.run(allocate_document(DocCategory.PURCHASE, "2024-03-01", {}, provided_doc_id="req-1"))

        assert first == second == "PUR2024-0001"
        assert len(configured_db.purchase_docs.docs) == 1
        assert asyncio.run(get_year_counters(2024))["PURCHASE_PUR_count"] == 1

    def test_buddhist_era_date(self, configured_db):
        doc_no = asyncio.run(allocate_document(DocCategory.PURCHASE, "2567-05-01", {}))
        assert doc_no == "PUR2024-0001"
        assert asyncio.run(get_year_counters(2567)) == {"PURCHASE_PUR_count": 1}
        assert configured_db.purchase_docs.docs[0]["doc_date"] == "2024-05-01"

    def test_buddhist_leap_day_is_stored_gregorian(self, configured_db):
        doc_no = asyncio.run(allocate_document(DocCategory.PURCHASE, "2567-02-29", {}))
        assert doc_no == "PUR2024-0001"
        assert configured_db.purchase_docs.docs[0]["doc_date"] == "2024-02-29"

    def test_new_year_starts_over(self, configured_db):
        asyncio.run(allocate_document(DocCategory.PURCHASE, "2024-12-31", {}))
        doc_no = asyncio.run(allocate_document(DocCategory.PURCHASE, "2025-01-01", {}))
        assert doc_no == "PUR2025-0001"

    def test_pending_review_gets_submitted_at(self, configured_db):
        asyncio.run(allocate_document(
            DocCategory.PURCHASE, "2024-03-01", {}, initial_status=DocStatus.PENDING_REVIEW
        ))
        stored = configured_db.purchase_docs.docs[0]
        assert stored["status"] == "PENDING_REVIEW"
        assert stored["submitted_at"] == stored["created_at"]

    def test_invalid_date(self, configured_db):
        with pytest.raises(InvalidDocDate):
            asyncio.run(allocate_document(DocCategory.PURCHASE, "not-a-date", {}))
        assert configured_db.purchase_docs.docs == []


class TestMissingConfiguration:
    def test_no_settings_record(self, fake_db):
        with pytest.raises(DocumentSettingsMissing) as exc:
            asyncio.run(allocate_document(DocCategory.PURCHASE, "2024-03-01", {}))

        assert exc.value.error_code == ErrorCode.DOC_SETTINGS_MISSING
        assert fake_db.purchase_docs.docs == []
        assert fake_db.document_counters.docs == []
        assert fake_db.client.transactions == 0

    def test_prefix_not_set_for_category(self, configured_db):
        with pytest.raises(DocumentSettingsMissing) as exc:
            asyncio.run(allocate_document(DocCategory.TAX_INVOICE, "2024-03-01", {}))

        assert exc.value.error_code == ErrorCode.DOC_PREFIX_MISSING
        assert configured_db.documents.docs == []

    def test_blank_prefix(self, fake_db):
        asyncio.run(fake_db.settings.insert_one({"type": "documents", "purchase_prefix": "   "}))
        with pytest.raises(DocumentSettingsMissing):
            asyncio.run(allocate_document(DocCategory.PURCHASE, "2024-03-01", {}))


class TestCollisions:
    def test_next_free_skips_taken_numbers(self, configured_db):
        for i in range(1, 4):
            _store(configured_db, "purchase_docs", f"PUR2024-{i:04d}")

        sequence, doc_no = asyncio.run(next_free_sequence(DocCategory.PURCHASE, "PUR", 2024, 1))
        assert (sequence, doc_no) == (4, "PUR2024-0004")

    def test_next_free_gives_up(self, configured_db):
        for i in range(1, 4):
            _store(configured_db, "purchase_docs", f"PUR2024-{i:04d}")

        with pytest.raises(SequenceExhausted) as exc:
            asyncio.run(next_free_sequence(DocCategory.PURCHASE, "PUR", 2024, 1, max_attempts=3))
        assert exc.value.error_code == ErrorCode.DOC_SEQUENCE_EXHAUSTED

    def test_stale_baseline_is_skipped_inside_transaction(self, configured_db, monkeypatch):
        async def _no_baseline(*args, **kwargs):
            return 0

        monkeypatch.setattr(allocator, "find_collection_baseline", _no_baseline)
        for i in range(1, 4):
            _store(configured_db, "purchase_docs", f"PUR2024-{i:04d}")

        doc_no = asyncio.run(allocate_document(DocCategory.PURCHASE, "2024-03-01", {}))
        assert doc_no == "PUR2024-0004"

    def test_exhaustion_rolls_back(self, configured_db, monkeypatch):
        async def _no_baseline(*args, **kwargs):
            return 0

        monkeypatch.setattr(allocator, "find_collection_baseline", _no_baseline)
        for i in range(1, 4):
            _store(configured_db, "purchase_docs", f"PUR2024-{i:04d}")

        with pytest.raises(SequenceExhausted):
            asyncio.run(allocate_document(DocCategory.PURCHASE, "2024-03-01", {}, max_attempts=2))

        assert len(configured_db.purchase_docs.docs) == 3
        assert asyncio.run(get_year_counters(2024)) == {}


class TestSharedCollection:
    def test_counter_record_keeps_sibling_fields(self, configured_db):
        asyncio.run(allocate_document(DocCategory.PURCHASE, "2024-03-01", {}))
        asyncio.run(allocate_document(DocCategory.RECEIPT, "2024-03-01", {}))
        asyncio.run(allocate_document(DocCategory.RECEIPT, "2024-03-02", {}))

        counters = asyncio.run(get_year_counters(2024))
        assert counters == {"PURCHASE_PUR_count": 1, "RECEIPT_RC_count": 2}
        assert len(configured_db.document_counters.docs) == 1

    def test_baseline_is_scoped_by_doc_type(self, configured_db):
        # same doc_no under another type does not move the receipt sequence
        _store(configured_db, "documents", "RC2024-0007", doc_type="QUOTATION")

        doc_no = asyncio.run(allocate_document(DocCategory.RECEIPT, "2024-03-01", {}))
        assert doc_no == "RC2024-0001"


class TestManualBackfill:
    def test_backfill_leaves_counter_alone(self, configured_db):
        document = asyncio.run(create_document_manual(DocCategory.PURCHASE, "PUR2024-0010", "2024-02-01", {}))

        assert document["backfilled"] is True
        assert "_id" not in document
        assert asyncio.run(get_year_counters(2024)) == {}

    def test_duplicate_backfill_rejected(self, configured_db):
        asyncio.run(create_document_manual(DocCategory.PURCHASE, "PUR2024-0010", "2024-02-01", {}))

        with pytest.raises(DuplicateDocNo) as exc:
            asyncio.run(create_document_manual(DocCategory.PURCHASE, "PUR2024-0010", "2024-02-01", {}))
        assert exc.value.error_code == ErrorCode.DOC_DUPLICATE_NO
        assert len(configured_db.purchase_docs.docs) == 1

    def test_allocation_steps_past_backfill(self, configured_db):
        asyncio.run(allocate_document(DocCategory.PURCHASE, "2024-03-01", {}))
        asyncio.run(create_document_manual(DocCategory.PURCHASE, "PUR2024-0010", "2024-02-01", {}))

        assert asyncio.run(peek_next_doc_no(DocCategory.PURCHASE, "2024-03-02")) == "PUR2024-0011"
        doc_no = asyncio.run(allocate_document(DocCategory.PURCHASE, "2024-03-02", {}))
        assert doc_no == "PUR2024-0011"

    def test_backfill_stores_gregorian_date(self, configured_db):
        document = asyncio.run(create_document_manual(DocCategory.PURCHASE, "PUR2024-0003", "2567-02-29", {}))
        assert document["doc_date"] == "2024-02-29"

    def test_empty_number(self, configured_db):
        with pytest.raises(SequenceError) as exc:
            asyncio.run(create_document_manual(DocCategory.PURCHASE, "  ", "2024-02-01", {}))
        assert exc.value.error_code == ErrorCode.GENERAL_VALIDATION_ERROR


class TestPeek:
    def test_peek_does_not_write(self, configured_db):
        assert asyncio.run(peek_next_doc_no(DocCategory.PURCHASE, "2024-03-01")) == "PUR2024-0001"
        assert asyncio.run(peek_next_doc_no(DocCategory.PURCHASE, "2024-03-01")) == "PUR2024-0001"
        assert configured_db.purchase_docs.docs == []
        assert configured_db.document_counters.docs == []


class TestTransientConflicts:
    def test_body_reruns_after_conflict(self, configured_db):
        configured_db.client.pending_conflicts = [None]

        doc_no = asyncio.run(allocate_document(DocCategory.PURCHASE, "2024-03-01", {}))
        assert doc_no == "PUR2024-0001"
        assert configured_db.client.attempts == 2
        assert len(configured_db.purchase_docs.docs) == 1
        assert asyncio.run(get_year_counters(2024))["PURCHASE_PUR_count"] == 1

    def test_rerun_sees_competing_commit(self, configured_db):
        async def _other_writer(db):
            await db.purchase_docs.insert_one({"id": "other", "doc_no": "PUR2024-0001", "doc_type": "PURCHASE"})
            await db.document_counters.update_one(
                {"id": "2024"}, {"$set": {"year": 2024, "PURCHASE_PUR_count": 1}}, upsert=True
            )

        configured_db.client.pending_conflicts = [_other_writer]

        doc_no = asyncio.run(allocate_document(DocCategory.PURCHASE, "2024-03-01", {}))
        assert doc_no == "PUR2024-0002"
        assert sorted(d["doc_no"] for d in configured_db.purchase_docs.docs) == ["PUR2024-0001", "PUR2024-0002"]
        assert asyncio.run(get_year_counters(2024))["PURCHASE_PUR_count"] == 2

    def test_retry_id_committed_by_another_attempt(self, configured_db):
        async def _same_request_committed(db):
            await db.purchase_docs.insert_one({"id": "req-1", "doc_no": "PUR2024-0001", "doc_type": "PURCHASE"})
            await db.document_counters.update_one(
                {"id": "2024"}, {"$set": {"year": 2024, "PURCHASE_PUR_count": 1}}, upsert=True
            )

        configured_db.client.pending_conflicts = [_same_request_committed]

        doc_no = asyncio.run(allocate_document(DocCategory.PURCHASE, "2024-03-01", {}, provided_doc_id="req-1"))
        assert doc_no == "PUR2024-0001"
        assert len(configured_db.purchase_docs.docs) == 1
        assert asyncio.run(get_year_counters(2024))["PURCHASE_PUR_count"] == 1

    def test_concurrent_allocations_with_conflicts(self, configured_db):
        configured_db.client.pending_conflicts = [None] * 3

        async def _many():
            return await asyncio.gather(*[
                allocate_document(DocCategory.PURCHASE, "2024-03-01", {"n": i}) for i in range(10)
            ])

        numbers = asyncio.run(_many())
        assert sorted(numbers) == [f"PUR2024-{i:04d}" for i in range(1, 11)]
        assert len(configured_db.purchase_docs.docs) == 10
        assert configured_db.client.attempts == 13
        assert asyncio.run(get_year_counters(2024))["PURCHASE_PUR_count"] == 10
