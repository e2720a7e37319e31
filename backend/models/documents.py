"""
Business Documents Model - numbered business documents and their counters
"""
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Dict, Any
from pydantic import BaseModel, Field


class DocCategory(str, Enum):
    """Document categories that receive a sequential number"""
    PURCHASE = "PURCHASE"
    QUOTATION = "QUOTATION"
    DELIVERY_NOTE = "DELIVERY_NOTE"
    TAX_INVOICE = "TAX_INVOICE"
    RECEIPT = "RECEIPT"
    BILLING_NOTE = "BILLING_NOTE"
    CREDIT_NOTE = "CREDIT_NOTE"
    WITHHOLDING_TAX = "WITHHOLDING_TAX"


class DocStatus(str, Enum):
    DRAFT = "DRAFT"
    PENDING_REVIEW = "PENDING_REVIEW"
    APPROVED = "APPROVED"
    PAID = "PAID"
    CANCELLED = "CANCELLED"


# category -> (prefix key in settings, collection, initial status)
CATEGORY_CONFIG = {
    DocCategory.PURCHASE: ("purchase_prefix", "purchase_docs", DocStatus.DRAFT),
    DocCategory.QUOTATION: ("quotation_prefix", "documents", DocStatus.DRAFT),
    DocCategory.DELIVERY_NOTE: ("delivery_note_prefix", "documents", DocStatus.DRAFT),
    DocCategory.TAX_INVOICE: ("tax_invoice_prefix", "documents", DocStatus.DRAFT),
    DocCategory.RECEIPT: ("receipt_prefix", "documents", DocStatus.DRAFT),
    DocCategory.BILLING_NOTE: ("billing_note_prefix", "documents", DocStatus.DRAFT),
    DocCategory.CREDIT_NOTE: ("credit_note_prefix", "documents", DocStatus.DRAFT),
    DocCategory.WITHHOLDING_TAX: ("withholding_tax_prefix", "documents", DocStatus.DRAFT),
}


def prefix_key_for(category: DocCategory) -> str:
    return CATEGORY_CONFIG[category][0]


def collection_for(category: DocCategory) -> str:
    return CATEGORY_CONFIG[category][1]


def initial_status_for(category: DocCategory) -> DocStatus:
    return CATEGORY_CONFIG[category][2]


@dataclass(frozen=True)
class CounterKey:
    """
    One sequence inside the per-year counter record.

    Several (category, prefix) pairs share the same record, each stored
    under its own field: PURCHASE + PUR -> "PURCHASE_PUR_count".
    """
    category: DocCategory
    prefix: str

    def __post_init__(self):
        object.__setattr__(self, "category", DocCategory(self.category))

    @property
    def field(self) -> str:
        return f"{self.category.value}_{self.prefix}_count"


class DocumentSettings(BaseModel):
    """Prefix configuration record - settings {"type": "documents"}"""
    purchase_prefix: Optional[str] = None
    quotation_prefix: Optional[str] = None
    delivery_note_prefix: Optional[str] = None
    tax_invoice_prefix: Optional[str] = None
    receipt_prefix: Optional[str] = None
    billing_note_prefix: Optional[str] = None
    credit_note_prefix: Optional[str] = None
    withholding_tax_prefix: Optional[str] = None


class DocumentCreate(BaseModel):
    doc_date: str  # YYYY-MM-DD
    data: Dict[str, Any] = Field(default_factory=dict)
    initial_status: Optional[DocStatus] = None
    doc_id: Optional[str] = None  # idempotent retries


class DocumentBackfill(BaseModel):
    doc_no: str
    doc_date: str  # YYYY-MM-DD
    data: Dict[str, Any] = Field(default_factory=dict)
