"""
Currency helpers.

Every monetary amount in the system is stored in whole currency units. Values
are rounded at the point they are computed (price x quantity, ml-proportional
price, submitted cash) so drift never accumulates across transactions.
"""
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

WHOLE_UNIT = Decimal('1')


def to_decimal(value) -> Decimal:
    """Convert int/float/str/Decimal to a finite Decimal without float artifacts."""
    if isinstance(value, bool) or value is None:
        raise ValueError(f'Invalid amount: {value!r}')
    if isinstance(value, Decimal):
        amount = value
    else:
        try:
            amount = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            raise ValueError(f'Invalid amount: {value!r}')
    # JSON bodies may carry Infinity or NaN, which cannot be quantized
    if not amount.is_finite():
        raise ValueError(f'Invalid amount: {value!r}')
    return amount


def round_currency(value) -> int:
    """
    Round an amount to whole currency units (half away from zero).

    >>> round_currency('12.5')
    13
    >>> round_currency(Decimal('0.49'))
    0
    """
    try:
        return int(to_decimal(value).quantize(WHOLE_UNIT, rounding=ROUND_HALF_UP))
    except InvalidOperation:
        # Exponent beyond the context precision
        raise ValueError(f'Amount out of range: {value!r}')


def line_total(unit_price, quantity: int) -> int:
    """Total for a sale line: rounded unit price times quantity."""
    return round_currency(unit_price) * int(quantity)


def ml_price(sell_price, ml_capacity, ml_amount) -> int:
    """Proportional price of `ml_amount` out of a bottle priced `sell_price` for `ml_capacity` ml."""
    capacity = to_decimal(ml_capacity)
    if capacity <= 0:
        raise ValueError('Bottle capacity must be greater than 0')
    return round_currency(to_decimal(sell_price) / capacity * to_decimal(ml_amount))


def parse_amount(value, allow_zero: bool = True) -> int:
    """
    Parse a user-supplied amount into whole currency units.

    Raises:
        ValueError: if the value is missing, not numeric or negative.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValueError('Amount is required')
    amount = round_currency(value)
    if amount < 0:
        raise ValueError('Amount cannot be negative')
    if not allow_zero and amount == 0:
        raise ValueError('Amount must be greater than 0')
    return amount
