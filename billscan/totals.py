"""Bill total recomputation"""
import math
import re
from typing import Any

from .models import Bill


_NUMBER_NOISE = re.compile(r"[,\s]")
_LEADING_SYMBOL = re.compile(r"^([+-]?)[^\d.+-]*")


def as_number(value: Any) -> float:
    """Coerce a loosely typed value to a float, falling back to 0"""
    if isinstance(value, bool) or value is None:
        return 0.0
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        text = _LEADING_SYMBOL.sub(r"\1", _NUMBER_NOISE.sub("", value))
        try:
            number = float(text)
        except ValueError:
            return 0.0
    else:
        return 0.0

    if math.isnan(number) or math.isinf(number):
        return 0.0
    return number


def recompute_total(bill: Bill) -> float:
    """Sum of all item totals plus all tax amounts.

    No rounding is applied; that is left to whatever formats the number.
    """
    items_total = sum((as_number(item.total_price) for item in bill.items), 0.0)
    tax_total = sum((as_number(tax.amount) for tax in bill.summary.tax), 0.0)
    return items_total + tax_total
