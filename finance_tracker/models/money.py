"""
Money Amounts

Amounts travel over the wire as decimal strings ("50.00", "1000", "0.1").
They are parsed into Decimal for summation so totals never pick up
floating point drift.

DESIGN DECISION: Parsing is strict. Empty strings, free text, NaN and
infinities are rejected rather than coerced to zero. The caller decides
whether a bad amount skips a record or fails a command.
"""

from decimal import Decimal, InvalidOperation
from typing import Iterable, Union


ZERO = Decimal("0")

AmountInput = Union[str, int, float, Decimal]


class InvalidAmountError(ValueError):
    """Raised when a value cannot be read as a finite decimal amount."""

    def __init__(self, value: object):
        self.value = value
        super().__init__(f"Invalid amount: {value!r}")


def parse_amount(value: AmountInput) -> Decimal:
    """
    Parse a wire amount into an exact Decimal.

    Args:
        value: Decimal string as sent by the backend, or a number

    Returns:
        The amount as a finite Decimal

    Raises:
        InvalidAmountError: If the value is not a finite decimal number
    """
    if isinstance(value, bool):
        raise InvalidAmountError(value)

    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, (int, float)):
        # str() keeps the shortest textual form of a float
        amount = _to_decimal(str(value), value)
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            raise InvalidAmountError(value)
        amount = _to_decimal(text, value)
    else:
        raise InvalidAmountError(value)

    if not amount.is_finite():
        raise InvalidAmountError(value)
    return amount


def sum_amounts(values: Iterable[AmountInput]) -> Decimal:
    """Sum amounts exactly. An empty iterable sums to zero."""
    total = ZERO
    for value in values:
        total += parse_amount(value)
    return total


def _to_decimal(text: str, original: object) -> Decimal:
    try:
        return Decimal(text)
    except InvalidOperation:
        raise InvalidAmountError(original) from None
