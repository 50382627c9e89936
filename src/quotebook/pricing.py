"""
Line and order pricing.

All amounts are ``Decimal`` values, currency-agnostic. Rounding happens once,
on the final figure being reported: a line total is rounded when it is the
result, but order totals sum the unrounded line values and round the sum.
The policy is 2 decimal places, banker's rounding (ROUND_HALF_EVEN).
"""

from collections.abc import Iterable, Mapping
from decimal import ROUND_HALF_EVEN, Decimal, InvalidOperation
from typing import Any

from .errors import ValidationError

MONEY_PLACES = Decimal("0.01")
HUNDRED = Decimal("100")

# Accepted spellings for the pricing fields of a mapping-shaped line
_FIELD_ALIASES = {
    "quantity": ("quantity",),
    "unit_price": ("unit_price", "unitPrice"),
    "discount_percent": ("discount_percent", "discountPercent"),
}
_FIELD_DEFAULTS = {
    "quantity": Decimal("1"),
    "unit_price": Decimal("0"),
    "discount_percent": Decimal("0"),
}


def to_decimal(value: Any, field: str) -> Decimal:
    """
    Convert a user-supplied number to Decimal.

    Floats go through their shortest repr so 0.1 becomes Decimal("0.1").
    Booleans, NaN and infinities are rejected.

    Raises:
        ValidationError: If the value is not a finite number.
    """
    if isinstance(value, bool):
        raise ValidationError(field, "expected a number, got a boolean")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, float)):
        result = Decimal(repr(value)) if isinstance(value, float) else Decimal(value)
    elif isinstance(value, str):
        try:
            result = Decimal(value.strip())
        except InvalidOperation:
            raise ValidationError(field, f"expected a number, got {value!r}")
    else:
        raise ValidationError(field, f"expected a number, got {type(value).__name__}")

    if not result.is_finite():
        raise ValidationError(field, "must be a finite number")
    return result


def round_money(amount: Decimal) -> Decimal:
    """Round an amount to the fixed money precision."""
    return amount.quantize(MONEY_PLACES, rounding=ROUND_HALF_EVEN)


def _line_field(line: Any, field: str) -> Decimal:
    if isinstance(line, Mapping):
        for key in _FIELD_ALIASES[field]:
            if line.get(key) is not None:
                return to_decimal(line[key], field)
        return _FIELD_DEFAULTS[field]
    value = getattr(line, field, None)
    if value is None:
        return _FIELD_DEFAULTS[field]
    return to_decimal(value, field)


def _unrounded_line_total(line: Any) -> Decimal:
    quantity = _line_field(line, "quantity")
    unit_price = _line_field(line, "unit_price")
    discount = _line_field(line, "discount_percent")

    if quantity < 0:
        raise ValidationError("quantity", "must be >= 0")
    if unit_price < 0:
        raise ValidationError("unit_price", "must be >= 0")
    if discount < 0 or discount > HUNDRED:
        raise ValidationError("discount_percent", "must be between 0 and 100")

    return unit_price * quantity * (1 - discount / HUNDRED)


def compute_line_total(line: Any) -> Decimal:
    """
    Compute the discounted total of a single line.

    ``unit_price * quantity * (1 - discount_percent / 100)``, rounded once.

    Args:
        line: A LineItem, or a mapping with quantity / unit_price /
            discount_percent (camelCase keys are accepted too). Missing
            fields default to quantity 1, price 0, discount 0.

    Returns:
        Non-negative Decimal with two decimal places.

    Raises:
        ValidationError: If a field is out of range; ``field`` names it.
    """
    return round_money(_unrounded_line_total(line))


def compute_order_total(lines: Iterable[Any]) -> Decimal:
    """
    Sum of all line totals, rounded once at the end.

    Stays within one rounding unit of the sum of individually rounded
    line totals.
    """
    total = sum((_unrounded_line_total(line) for line in lines), Decimal("0"))
    return round_money(total)


def compute_vat(total: Decimal, vat_rate: Decimal) -> Decimal:
    """VAT amount for a net total at a percentage rate."""
    if vat_rate < 0:
        raise ValidationError("vat_rate", "must be >= 0")
    return round_money(total * vat_rate / HUNDRED)


def format_amount(amount: Decimal, currency: str = "DKK") -> str:
    """
    Format an amount for display in the portal's Danish locale.

    Boundary use only (CLI output, documents). ``Decimal("1234.5")``
    becomes ``"1.234,50 kr."``; other currencies keep their ISO code
    as suffix (``"1.234,50 EUR"``).
    """
    rounded = round_money(amount)
    sign = "-" if rounded < 0 else ""
    whole, _, fraction = f"{abs(rounded):.2f}".partition(".")

    groups = []
    while len(whole) > 3:
        groups.insert(0, whole[-3:])
        whole = whole[:-3]
    groups.insert(0, whole)

    suffix = "kr." if currency.upper() == "DKK" else currency.upper()
    return f"{sign}{'.'.join(groups)},{fraction} {suffix}"
