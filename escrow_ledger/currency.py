"""
Monetary Units Module

Amounts inside the ledger are integers in the smallest unit of a denomination
(e.g. wei for ETH). Decimal text from callers is parsed here, at the boundary,
and NEVER via float.
"""

from decimal import Decimal, InvalidOperation, ROUND_DOWN, localcontext
from enum import Enum
import re

from .errors import ValidationError


class Denomination(Enum):
    """Supported denominations with their number of decimal places"""
    ETH = ("ETH", 18)   # Ether, amounts kept in wei
    GWEI = ("GWEI", 9)
    WEI = ("WEI", 0)
    USD = ("USD", 2)    # Fiat-style campaigns, amounts kept in cents

    def __init__(self, code: str, decimals: int):
        self.code = code
        self.decimals = decimals

    @property
    def unit(self) -> int:
        """Number of smallest units in one whole unit"""
        return 10 ** self.decimals

    @classmethod
    def from_code(cls, code: str) -> 'Denomination':
        try:
            return cls[code.upper()]
        except KeyError:
            raise ValidationError(f"Unsupported denomination '{code}'", {"currency": code})


_AMOUNT_PATTERN = re.compile(r'^\d+(\.\d+)?$')
_MAX_AMOUNT_DIGITS = 64


def parse_amount(value, denomination: Denomination = Denomination.ETH) -> int:
    """
    Convert decimal text (in whole units) to integer smallest units

    Args:
        value: String such as "1.5", or an int/Decimal of whole units
        denomination: Denomination the text is expressed in

    Returns:
        Amount in smallest units

    Raises:
        ValidationError: If the value is empty, malformed, negative or has
            more fractional digits than the denomination supports
    """
    if isinstance(value, bool) or value is None:
        raise ValidationError("Amount is required", {"amount": value})

    if isinstance(value, int):
        text = str(value)
    elif isinstance(value, Decimal):
        text = format(value, 'f')
    elif isinstance(value, str):
        text = value.strip().replace('_', '')
    else:
        raise ValidationError("Amount must be decimal text", {"amount": repr(value)})

    if len(text) > _MAX_AMOUNT_DIGITS or not _AMOUNT_PATTERN.match(text):
        raise ValidationError(f"Cannot parse amount '{value}'", {"amount": str(value)})

    with localcontext() as ctx:
        # Exact arithmetic: the global context would round wide wei values
        ctx.prec = _MAX_AMOUNT_DIGITS + 20
        try:
            scaled = Decimal(text) * denomination.unit
        except InvalidOperation:
            raise ValidationError(f"Cannot parse amount '{value}'", {"amount": str(value)})
        exact = scaled == scaled.to_integral_value(rounding=ROUND_DOWN)

    if not exact:
        raise ValidationError(
            f"Amount '{value}' exceeds {denomination.decimals} decimal places for {denomination.code}",
            {"amount": str(value), "currency": denomination.code}
        )

    return int(scaled)


def format_amount(units: int, denomination: Denomination = Denomination.ETH) -> str:
    """Render smallest units as plain decimal text without trailing zeros"""
    if denomination.decimals == 0:
        return str(units)

    sign = "-" if units < 0 else ""
    whole, fraction = divmod(abs(units), denomination.unit)
    fraction_text = str(fraction).rjust(denomination.decimals, '0').rstrip('0')
    if fraction_text:
        return f"{sign}{whole}.{fraction_text}"
    return f"{sign}{whole}"


def progress_percent(raised: int, goal: int) -> float:
    """Share of the goal raised so far, capped at 100"""
    if goal <= 0:
        return 0.0
    return min(raised * 100 / goal, 100.0)
