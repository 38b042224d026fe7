"""Display-only currency conversion.

Nothing here touches a Bill's stored amounts. Conversion uses a rate table
based on the bill's own currency and quietly falls back to the unconverted
amount whenever there is no usable rate.
"""
from typing import Dict, NamedTuple, Optional

from .models import Bill, DisplayBill, DisplayLine, RateSnapshot


class CurrencyInfo(NamedTuple):
    code: str
    name: str
    symbol: str
    decimals: int = 2


CURRENCIES: Dict[str, CurrencyInfo] = {
    c.code: c
    for c in (
        CurrencyInfo("USD", "US Dollar", "$"),
        CurrencyInfo("EUR", "Euro", "€"),
        CurrencyInfo("GBP", "British Pound", "£"),
        CurrencyInfo("INR", "Indian Rupee", "₹"),
        CurrencyInfo("JPY", "Japanese Yen", "¥", 0),
        CurrencyInfo("CNY", "Chinese Yuan", "CN¥"),
        CurrencyInfo("KRW", "South Korean Won", "₩", 0),
        CurrencyInfo("CAD", "Canadian Dollar", "CA$"),
        CurrencyInfo("AUD", "Australian Dollar", "A$"),
        CurrencyInfo("NZD", "New Zealand Dollar", "NZ$"),
        CurrencyInfo("CHF", "Swiss Franc", "CHF "),
        CurrencyInfo("HKD", "Hong Kong Dollar", "HK$"),
        CurrencyInfo("SGD", "Singapore Dollar", "S$"),
        CurrencyInfo("THB", "Thai Baht", "฿"),
        CurrencyInfo("MXN", "Mexican Peso", "MX$"),
        CurrencyInfo("AED", "UAE Dirham", "AED "),
        CurrencyInfo("SAR", "Saudi Riyal", "SAR "),
        CurrencyInfo("BRL", "Brazilian Real", "R$"),
        CurrencyInfo("ZAR", "South African Rand", "R "),
        CurrencyInfo("SEK", "Swedish Krona", "kr "),
    )
}


def get_rate(bill_currency: str, target_currency: str, snapshot: Optional[RateSnapshot]) -> Optional[float]:
    """Multiplier from the bill currency to the target, or None if unknown"""
    if bill_currency == target_currency:
        return 1.0
    if snapshot is None or snapshot.base != bill_currency:
        return None
    return snapshot.rates.get(target_currency)


def convert(
    amount: float,
    bill_currency: str,
    target_currency: str,
    snapshot: Optional[RateSnapshot],
) -> float:
    """Convert an amount for display.

    Returns ``amount`` unchanged when the currencies match, when there is
    no snapshot, or when the snapshot has no rate for the target.
    """
    if bill_currency == target_currency:
        return amount
    rate = get_rate(bill_currency, target_currency, snapshot)
    if rate is None:
        return amount
    return amount * rate


def convert_bill(bill: Bill, target_currency: str, snapshot: Optional[RateSnapshot]) -> DisplayBill:
    """Build the converted view shown for a bill in ``target_currency``"""
    base = bill.summary.currency
    rate = get_rate(base, target_currency, snapshot)
    display_currency = target_currency if rate is not None else base

    def conv(amount: float) -> float:
        return convert(amount, base, target_currency, snapshot)

    return DisplayBill(
        currency=display_currency,
        baseCurrency=base,
        rate=rate,
        items=[
            DisplayLine(
                name=item.name,
                quantity=item.quantity,
                unit_price=conv(item.unit_price),
                amount=conv(item.total_price),
            )
            for item in bill.items
        ],
        tax=[DisplayLine(name=tax.name, amount=conv(tax.amount)) for tax in bill.summary.tax],
        totalAmount=conv(bill.summary.totalAmount),
    )


def currency_symbol(code: str) -> str:
    info = CURRENCIES.get(code)
    return info.symbol if info else f"{code} "


def format_price(amount: float, code: str) -> str:
    """Format an amount with the currency's symbol and decimal places"""
    info = CURRENCIES.get(code)
    decimals = info.decimals if info else 2
    return f"{currency_symbol(code)}{amount:,.{decimals}f}"
