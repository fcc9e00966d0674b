"""
Pricing Engine for stone fabrication quotes.

Pure functions, no I/O. This module handles:
1. Line area (m²) from width x height x pieces
2. Line price with wastage markup applied before the line discount
3. Quote totals: sub total, header discount, VAT at 15%, grand total
4. Balance / paid checks with a one-cent tolerance
5. Splitting a tax-inclusive amount into net and tax

Inputs may be int, float, str or Decimal. Floats are converted through their
string form so 0.1 + 0.2 behaves the way a cashier expects. Nothing here
raises; callers clamp user input with clamp_line_inputs first.
"""
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Union

Number = Union[int, float, str, Decimal]

TAX_RATE = Decimal("0.15")
PRECISION_THRESHOLD = Decimal("0.01")
DEFAULT_WASTAGE_PERCENT = Decimal("15")

_CENT = Decimal("0.01")
_MILLI = Decimal("0.001")
_HUNDRED = Decimal("100")
_ZERO = Decimal("0")


def to_decimal(value: Number) -> Decimal:
    """Convert any numeric input to Decimal (None and '' become 0)."""
    if value is None or value == "":
        return _ZERO
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def round_money(value: Number) -> Decimal:
    """Round to cents, half-up. Applied only when persisting amounts."""
    return to_decimal(value).quantize(_CENT, rounding=ROUND_HALF_UP)


# ==================== Line items ====================

def line_sqm(width: Number, height: Number, pieces: Number) -> Decimal:
    """Area of a line in m², rounded to 3 decimals."""
    sqm = to_decimal(width) * to_decimal(height) * to_decimal(pieces)
    return sqm.quantize(_MILLI, rounding=ROUND_HALF_UP)


def line_raw_price(sqm: Number, price_per_sqm: Number) -> Decimal:
    return to_decimal(sqm) * to_decimal(price_per_sqm)


def line_final_price(
    sqm: Number,
    price_per_sqm: Number,
    wastage_percent: Number,
    discount_percent: Number,
) -> Decimal:
    """base x (1 + wastage/100) x (1 - discount/100). Wastage is applied first."""
    base = line_raw_price(sqm, price_per_sqm)
    with_wastage = base * (1 + to_decimal(wastage_percent) / _HUNDRED)
    return with_wastage * (1 - to_decimal(discount_percent) / _HUNDRED)


@dataclass
class LineInputs:
    """Clamped pricing inputs of one line item."""
    width: Decimal
    height: Decimal
    pieces: int
    price_per_sqm: Decimal
    wastage_percent: Decimal
    discount_percent: Decimal


@dataclass
class LinePricing:
    """Derived values of one line item, rounded for storage."""
    total_sqm: Decimal
    raw_price: Decimal
    final_price: Decimal


def clamp_line_inputs(
    width: Number = 0,
    height: Number = 0,
    pieces: Number = 1,
    price_per_sqm: Number = 0,
    wastage_percent: Number = DEFAULT_WASTAGE_PERCENT,
    discount_percent: Number = 0,
) -> LineInputs:
    """Clamp raw user input: no negatives anywhere, discount capped at 100%."""
    return LineInputs(
        width=max(_ZERO, to_decimal(width)),
        height=max(_ZERO, to_decimal(height)),
        pieces=max(0, int(to_decimal(pieces))),
        price_per_sqm=max(_ZERO, to_decimal(price_per_sqm)),
        wastage_percent=max(_ZERO, to_decimal(wastage_percent)),
        discount_percent=min(_HUNDRED, max(_ZERO, to_decimal(discount_percent))),
    )


def price_line(inputs: LineInputs) -> LinePricing:
    sqm = line_sqm(inputs.width, inputs.height, inputs.pieces)
    return LinePricing(
        total_sqm=sqm,
        raw_price=round_money(line_raw_price(sqm, inputs.price_per_sqm)),
        final_price=round_money(
            line_final_price(sqm, inputs.price_per_sqm, inputs.wastage_percent, inputs.discount_percent)
        ),
    )


# ==================== Quote totals ====================

def sub_total(prices: Iterable[Number]) -> Decimal:
    return sum((to_decimal(p) for p in prices), _ZERO)


def taxable_amount(sub_total_value: Number, discount: Number) -> Decimal:
    return max(_ZERO, to_decimal(sub_total_value) - to_decimal(discount))


def tax(taxable: Number) -> Decimal:
    return to_decimal(taxable) * TAX_RATE


def grand_total(taxable: Number) -> Decimal:
    return to_decimal(taxable) + tax(taxable)


@dataclass
class QuoteTotals:
    sub_total: Decimal
    taxable: Decimal
    tax: Decimal
    grand_total: Decimal


def quote_totals(line_prices: Iterable[Number], discount_amount: Number = 0) -> QuoteTotals:
    """Totals for a quote, rounded to cents for storage."""
    subtotal = round_money(sub_total(line_prices))
    taxable = round_money(taxable_amount(subtotal, max(_ZERO, to_decimal(discount_amount))))
    tax_value = round_money(tax(taxable))
    return QuoteTotals(
        sub_total=subtotal,
        taxable=taxable,
        tax=tax_value,
        grand_total=taxable + tax_value,
    )


# ==================== Payments ====================

def balance_due(grand_total_value: Number, paid: Number) -> Decimal:
    """Outstanding amount, never negative."""
    return max(_ZERO, to_decimal(grand_total_value) - to_decimal(paid))


def is_paid(grand_total_value: Number, paid: Number) -> bool:
    return balance_due(grand_total_value, paid) <= PRECISION_THRESHOLD


def split_gross(total: Number) -> tuple:
    """Split a tax-inclusive amount into (net, tax), both rounded to cents."""
    gross = round_money(total)
    net = round_money(gross / (1 + TAX_RATE))
    return net, gross - net
