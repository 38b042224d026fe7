"""Edit operations on a bill's working copy.

Every operation takes a bill and returns a new one; the input is never
mutated. Items and taxes are addressed by their position in the current
list, so callers must resolve the index against the list they just read.
An index that does not point at an existing element makes the operation a
no-op (logged at WARNING). Every structural change goes through
``_with_total`` so ``summary.totalAmount`` is always consistent.
"""
import logging
from typing import Any, Mapping, Optional, Union

from pydantic import BaseModel

from .models import Bill, LineItem, TaxLine
from .normalizer import normalize_currency_code
from .totals import as_number, recompute_total


logger = logging.getLogger(__name__)

Draft = Union[Mapping[str, Any], BaseModel]


def _fields(draft: Draft) -> Mapping[str, Any]:
    if isinstance(draft, BaseModel):
        return draft.model_dump()
    return draft


def _in_range(index: int, size: int) -> bool:
    return isinstance(index, int) and not isinstance(index, bool) and 0 <= index < size


def _with_total(bill: Bill) -> Bill:
    bill.summary.totalAmount = recompute_total(bill)
    return bill


def upsert_item(bill: Bill, draft: Draft, index: Optional[int] = None) -> Bill:
    """Replace the item at ``index``, or append when ``index`` is None.

    The item total is always ``quantity * unit_price``; any total carried
    by the draft is ignored.
    """
    fields = _fields(draft)
    quantity = as_number(fields.get("quantity"))
    unit_price = as_number(fields.get("unit_price"))
    item = LineItem(
        name=str(fields.get("name") or ""),
        quantity=quantity,
        unit_price=unit_price,
        total_price=quantity * unit_price,
    )

    updated = bill.model_copy(deep=True)
    if index is None:
        updated.items.append(item)
    elif _in_range(index, len(updated.items)):
        updated.items[index] = item
    else:
        logger.warning("Ignoring item update at index %r (have %d items)", index, len(bill.items))
        return updated
    return _with_total(updated)


def delete_item(bill: Bill, index: int) -> Bill:
    updated = bill.model_copy(deep=True)
    if not _in_range(index, len(updated.items)):
        logger.warning("Ignoring item delete at index %r (have %d items)", index, len(bill.items))
        return updated
    del updated.items[index]
    return _with_total(updated)


def upsert_tax(bill: Bill, draft: Draft, index: Optional[int] = None) -> Bill:
    """Replace the tax line at ``index``, or append when ``index`` is None"""
    fields = _fields(draft)
    tax = TaxLine(name=str(fields.get("name") or ""), amount=as_number(fields.get("amount")))

    updated = bill.model_copy(deep=True)
    taxes = updated.summary.tax
    if index is None:
        taxes.append(tax)
    elif _in_range(index, len(taxes)):
        taxes[index] = tax
    else:
        logger.warning("Ignoring tax update at index %r (have %d taxes)", index, len(taxes))
        return updated
    return _with_total(updated)


def delete_tax(bill: Bill, index: int) -> Bill:
    updated = bill.model_copy(deep=True)
    taxes = updated.summary.tax
    if not _in_range(index, len(taxes)):
        logger.warning("Ignoring tax delete at index %r (have %d taxes)", index, len(taxes))
        return updated
    del taxes[index]
    return _with_total(updated)


def set_base_currency(bill: Bill, code: str) -> Bill:
    """Correct the currency label of a bill.

    Amounts are not rescaled and ``originalCurrency`` is left alone.
    """
    updated = bill.model_copy(deep=True)
    updated.summary.currency = normalize_currency_code(code, updated.summary.currency)
    return updated
