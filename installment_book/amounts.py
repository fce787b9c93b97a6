"""
Amounts Module

Decimal handling and display formatting for collection amounts. Amounts are
always Decimal, never float; display follows the cashier's ledger conventions
(rupee symbol, Indian digit grouping, day/month/year dates).
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation, getcontext
from datetime import date
from typing import Optional, Union
import re

# High precision for intermediate products such as installment x periods
getcontext().prec = 28

AMOUNT_PRECISION = 2
ZERO = Decimal('0')

AmountLike = Union[Decimal, int, str]


def to_amount(value: AmountLike, precision: int = AMOUNT_PRECISION) -> Decimal:
    """
    Coerce a value to a Decimal amount rounded to the ledger precision

    Args:
        value: Decimal, int or numeric string
        precision: Number of decimal places to keep

    Returns:
        Rounded Decimal

    Raises:
        ValueError: If the value is a float, a bool, or not numeric
    """
    if isinstance(value, bool) or isinstance(value, float):
        raise ValueError(f"Amounts must be Decimal, int or str, got {type(value).__name__}")

    if not isinstance(value, Decimal):
        try:
            value = Decimal(str(value).strip())
        except InvalidOperation:
            raise ValueError(f"Cannot convert '{value}' to an amount")

    if not value.is_finite():
        raise ValueError(f"Amount must be finite, got {value}")

    try:
        return value.quantize(Decimal('0.1') ** precision, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise ValueError(f"Amount {value} is too large")


def amount_from_string(value: str, symbol: str = "₹") -> Decimal:
    """
    Parse an operator-entered amount such as "₹1,250" or "1,00,000.50"

    Commas are always digit-grouping separators here; the rupee ledger never
    uses a decimal comma. Anything else that is not part of a number is
    rejected rather than dropped.
    """
    if not value or not isinstance(value, str):
        raise ValueError("Value must be a non-empty string")

    clean_value = re.sub(r'[,\s]', '', value.replace(symbol, ''))
    if not clean_value:
        raise ValueError(f"Cannot convert '{value}' to an amount")

    return to_amount(clean_value)


def group_digits(integer_part: str) -> str:
    """Group digits the Indian way: last three, then pairs (1,23,45,678)"""
    if len(integer_part) <= 3:
        return integer_part
    head, tail = integer_part[:-3], integer_part[-3:]
    pairs = []
    while len(head) > 2:
        pairs.insert(0, head[-2:])
        head = head[:-2]
    if head:
        pairs.insert(0, head)
    return ",".join(pairs + [tail])


def format_amount(amount: Decimal, symbol: str = "₹", places: int = 0) -> str:
    """
    Format an amount for the collection sheet

    Args:
        amount: Amount to format
        symbol: Currency symbol prefix
        places: Decimal places to show (the sheets show whole rupees)

    Returns:
        Display string, e.g. "₹1,250" or "-₹50"
    """
    rounded = to_amount(amount, precision=places)
    sign = "-" if rounded < ZERO else ""
    text = f"{abs(rounded):.{places}f}"
    if "." in text:
        integer_part, fraction = text.split(".")
        body = f"{group_digits(integer_part)}.{fraction}"
    else:
        body = group_digits(text)
    return f"{sign}{symbol}{body}"


def format_date(value: Optional[date], date_format: str = "%d/%m/%Y") -> str:
    """Format a date the way the ledger books print it (en-GB by default)"""
    if value is None:
        return ""
    return value.strftime(date_format)
