"""Parsing for unit counts and ml amounts, which must be whole numbers."""
from decimal import Decimal, InvalidOperation

# Counts beyond this many digits are rejected before int() expands them
MAX_DIGITS = 15


def parse_whole_number(value) -> int:
    """
    Parse an integer count such as 3, 3.0 or '3'.

    Fractions are rejected rather than truncated (2.7 is not 2).

    Raises:
        ValueError: if the value is missing, boolean, non-finite or fractional.
    """
    if value is None or isinstance(value, bool):
        raise ValueError(f'Invalid whole number: {value!r}')
    if isinstance(value, int):
        return value
    try:
        number = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValueError(f'Invalid whole number: {value!r}')
    if not number.is_finite() or number.adjusted() >= MAX_DIGITS or number != number.to_integral_value():
        raise ValueError(f'Invalid whole number: {value!r}')
    return int(number)


def parse_positive_int(value) -> int:
    """Parse a whole number of at least 1."""
    number = parse_whole_number(value)
    if number < 1:
        raise ValueError(f'Expected a number of at least 1: {value!r}')
    return number
