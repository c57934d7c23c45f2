"""
Annotated column types and money helpers.

All monetary amounts are ``Decimal``. ``round_money`` is the only
sanctioned rounding for values shown to customers (two places,
half-up); stored amounts keep the full Numeric(38, 9) precision.
"""

from decimal import ROUND_HALF_UP, Context, Decimal, InvalidOperation, getcontext
from typing import Annotated

from sqlalchemy import Numeric, String

Money = Annotated[Decimal, Numeric(38, 9)]

# Percentages such as tax rates (15 means 15%)
Percent = Annotated[Decimal, Numeric(12, 6)]

ShortCode = Annotated[str, String(50)]

LongText = Annotated[str, String(4000)]

MONEY_DECIMAL_PLACES = 9
DISPLAY_DECIMAL_PLACES = 2
DEFAULT_ROUNDING = ROUND_HALF_UP

ZERO = Decimal("0")

# Smallest magnitude a Numeric(38, 9) column cannot hold (29 integer digits)
MAX_MAGNITUDE = Decimal(10) ** (38 - MONEY_DECIMAL_PLACES)


def to_decimal(value, default: Decimal = ZERO) -> Decimal:
    """
    Coerce user-entered numbers to Decimal.

    Accepts Decimal, int, float and numeric strings. Anything that
    cannot be parsed, is NaN/Infinity, or is too large to store
    becomes ``default``. Floats go through ``str`` so 0.1 stays 0.1.
    """
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, int):
        result = Decimal(value)
    else:
        try:
            result = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            return default
    if not result.is_finite() or abs(result) >= MAX_MAGNITUDE:
        return default
    return result


def round_money(amount: Decimal, places: int = DISPLAY_DECIMAL_PLACES) -> Decimal:
    """Round a monetary amount half-up to ``places`` decimal places."""
    quantizer = Decimal(1).scaleb(-places)
    # Enough digits for the integer part plus ``places``
    precision = max(getcontext().prec, amount.adjusted() + places + 2)
    return amount.quantize(
        quantizer, rounding=DEFAULT_ROUNDING, context=Context(prec=precision),
    )
