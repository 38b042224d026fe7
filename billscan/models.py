"""Pydantic models for bills, history records and extraction results"""
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


DEFAULT_CATEGORY_NAME = "Other"
DEFAULT_CATEGORY_ICON = "receipt-outline"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class LineItem(BaseModel):
    name: str = ""
    quantity: float = 0.0
    unit_price: float = 0.0
    total_price: float = 0.0


class TaxLine(BaseModel):
    name: str = ""
    amount: float = 0.0


class CategoryTag(BaseModel):
    name: str = DEFAULT_CATEGORY_NAME
    icon: str = DEFAULT_CATEGORY_ICON


class BillSummary(BaseModel):
    currency: str
    originalCurrency: Optional[str] = None
    totalAmount: float = 0.0
    tax: List[TaxLine] = []


class Bill(BaseModel):
    """The normalized, editable representation of one analyzed receipt.

    ``id`` stays ``None`` until the bill is first saved to a history store.
    """
    id: Optional[str] = None
    date: str = Field(default_factory=utc_now_iso)
    description: str = ""
    category: CategoryTag = Field(default_factory=CategoryTag)
    items: List[LineItem] = []
    summary: BillSummary
    imageRef: Optional[str] = None


class RawExtraction(BaseModel):
    """Untrusted provider output. Only the normalizer may read it."""
    payload: Dict[str, Any] = {}
    provider: Optional[str] = None


class RateSnapshot(BaseModel):
    base: str
    asOfDate: str = ""
    rates: Dict[str, float] = {}
    fetchedAt: datetime


class RecordSummary(BaseModel):
    totalAmount: float
    currency: str


class HistoryRecord(BaseModel):
    id: str
    date: str
    summary: RecordSummary
    category: CategoryTag
    fullData: Bill
    imageRef: Optional[str] = None


class SaveResult(BaseModel):
    success: bool
    id: Optional[str] = None
    warning: bool = False
    error: Optional[str] = None


class HistoryListing(BaseModel):
    records: List[HistoryRecord] = []
    error: Optional[str] = None


class ExtractionStatus(str, Enum):
    SUCCESS = "success"
    NOT_A_BILL = "not_a_bill"
    RATE_LIMITED = "rate_limited"
    TRANSIENT_FAILURE = "transient_failure"


class ExtractionOutcome(BaseModel):
    status: ExtractionStatus
    bill: Optional[Bill] = None
    message: Optional[str] = None
    provider: Optional[str] = None

    @property
    def retryable(self) -> bool:
        """Not-a-bill and transient failures offer a retry, quota errors do not"""
        return self.status in (ExtractionStatus.NOT_A_BILL, ExtractionStatus.TRANSIENT_FAILURE)


class DisplayLine(BaseModel):
    name: str
    quantity: float = 0.0
    unit_price: float = 0.0
    amount: float


class DisplayBill(BaseModel):
    """Converted, read-only view of a bill for a display currency."""
    currency: str
    baseCurrency: str
    rate: Optional[float] = None
    items: List[DisplayLine] = []
    tax: List[DisplayLine] = []
    totalAmount: float = 0.0

    @property
    def converted(self) -> bool:
        return self.currency != self.baseCurrency
