"""Convert untrusted extraction payloads into validated bills.

This is the only place where provider output becomes a ``Bill``. It never
fails: anything missing or malformed is replaced with a default.

- ``items`` and ``summary.tax`` are always lists; non-object entries are dropped
- item and tax numbers are coerced with ``as_number`` (unparseable -> 0)
- ``total_price`` is kept as reported, since a receipt may show a discounted line
- ``summary.currency`` falls back to the caller's default currency
- ``summary.originalCurrency`` is recorded once and never overwritten
"""
import logging
import re
from typing import Any, Dict, List, Mapping, Union

from .models import (
    DEFAULT_CATEGORY_ICON,
    DEFAULT_CATEGORY_NAME,
    Bill,
    BillSummary,
    CategoryTag,
    LineItem,
    RawExtraction,
    TaxLine,
    utc_now_iso,
)
from .totals import as_number, recompute_total


logger = logging.getLogger(__name__)

DEFAULT_CURRENCY = "USD"

_CURRENCY_CODE = re.compile(r"^[A-Z]{3}$")


def normalize_currency_code(value: Any, fallback: str = DEFAULT_CURRENCY) -> str:
    if isinstance(value, str):
        code = value.strip().upper()
        if _CURRENCY_CODE.match(code):
            return code
    return fallback


def _text(value: Any, default: str = "") -> str:
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return default


def _as_list(value: Any) -> List[Mapping[str, Any]]:
    if not isinstance(value, list):
        return []
    return [entry for entry in value if isinstance(entry, Mapping)]


def _normalize_item(raw: Mapping[str, Any]) -> LineItem:
    return LineItem(
        name=_text(raw.get("name")),
        quantity=as_number(raw.get("quantity")),
        unit_price=as_number(raw.get("unit_price")),
        total_price=as_number(raw.get("total_price")),
    )


def _normalize_tax(raw: Mapping[str, Any]) -> TaxLine:
    return TaxLine(name=_text(raw.get("name")), amount=as_number(raw.get("amount")))


def _normalize_category(raw: Any) -> CategoryTag:
    # The model sometimes answers with a bare category name
    if isinstance(raw, str) and raw.strip():
        return CategoryTag(name=raw.strip())
    if isinstance(raw, Mapping):
        return CategoryTag(
            name=_text(raw.get("name")) or DEFAULT_CATEGORY_NAME,
            icon=_text(raw.get("icon")) or DEFAULT_CATEGORY_ICON,
        )
    return CategoryTag()


def _payload_of(raw: Union[RawExtraction, Bill, Mapping[str, Any], None]) -> Dict[str, Any]:
    if isinstance(raw, RawExtraction):
        return dict(raw.payload)
    if isinstance(raw, Bill):
        return raw.model_dump()
    if isinstance(raw, Mapping):
        return dict(raw)
    return {}


def normalize(
    raw: Union[RawExtraction, Bill, Mapping[str, Any], None],
    fallback_currency: str = DEFAULT_CURRENCY,
) -> Bill:
    """Build a structurally valid Bill from whatever the provider returned.

    Accepts a ``RawExtraction``, a plain mapping, or an already normalized
    ``Bill``. Re-normalizing a bill keeps its id, date, image reference and
    recorded original currency.
    """
    payload = _payload_of(raw)
    fallback = normalize_currency_code(fallback_currency)

    summary_raw = payload.get("summary")
    if not isinstance(summary_raw, Mapping):
        summary_raw = {}

    items = [_normalize_item(item) for item in _as_list(payload.get("items"))]
    taxes = [_normalize_tax(tax) for tax in _as_list(summary_raw.get("tax"))]

    currency = normalize_currency_code(summary_raw.get("currency"), fallback)
    original = summary_raw.get("originalCurrency")
    if original:
        original_currency = normalize_currency_code(original, currency)
    else:
        original_currency = currency

    bill = Bill(
        description=_text(payload.get("description")),
        category=_normalize_category(payload.get("category")),
        items=items,
        summary=BillSummary(
            currency=currency,
            originalCurrency=original_currency,
            tax=taxes,
        ),
    )

    raw_total = summary_raw.get("totalAmount")
    if isinstance(raw_total, (int, float, str)) and not isinstance(raw_total, bool) and str(raw_total).strip():
        bill.summary.totalAmount = as_number(raw_total)
    else:
        bill.summary.totalAmount = recompute_total(bill)

    bill_id = payload.get("id")
    if isinstance(bill_id, str) and bill_id:
        bill.id = bill_id
    date = payload.get("date")
    bill.date = date if isinstance(date, str) and date else utc_now_iso()
    image_ref = payload.get("imageRef")
    if isinstance(image_ref, str) and image_ref:
        bill.imageRef = image_ref

    logger.debug(
        "Normalized bill: %d items, %d taxes, currency=%s",
        len(bill.items), len(bill.summary.tax), bill.summary.currency,
    )
    return bill
