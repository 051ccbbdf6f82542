"""
decimal_math.py - Checked exponent-scaled integer arithmetic

Every money amount after the pricing step is an integer mantissa paired with
a base-10 exponent. The helpers here combine such pairs and rescale the exact
result to a caller-chosen target exponent.

Rules:
    - Results must fit in an unsigned 64-bit integer.
    - Intermediate products must fit in an unsigned 128-bit integer.
    - Underflow below zero, division by zero and overflow raise
      MathOverflowError. Nothing wraps, saturates or rounds silently.
    - Division truncates toward zero unless the ceil variant is used.

Example:
    # 20 USD (exponent -6) times 10 units (exponent 0) expressed at exponent -6
    checked_decimal_mul(20_000_000, -6, 10, 0, -6)  # -> 200_000_000
"""

from __future__ import annotations
from decimal import Decimal, ROUND_DOWN, InvalidOperation
from typing import Union

from .core import MathOverflowError, U64_MAX, U128_MAX


# Largest power of ten that still fits in u128.
MAX_POWER_OF_TEN = 38


def _check_operand(value: int, name: str = "operand") -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"{name} must be int, got {type(value).__name__}")
    if value < 0:
        raise MathOverflowError(f"{name} must be unsigned, got {value}")
    return value


def _check_result(value: int, bound: int = U64_MAX) -> int:
    if value < 0 or value > bound:
        raise MathOverflowError(f"Overflow in arithmetic operation: {value}")
    return value


def checked_add(a: int, b: int) -> int:
    """a + b, failing if the sum exceeds u64."""
    _check_operand(a, "a")
    _check_operand(b, "b")
    return _check_result(a + b)


def checked_sub(a: int, b: int) -> int:
    """a - b, failing if the difference would be negative."""
    _check_operand(a, "a")
    _check_operand(b, "b")
    if b > a:
        raise MathOverflowError(f"Overflow in arithmetic operation: {a} - {b}")
    return a - b


def checked_mul(a: int, b: int) -> int:
    """a * b, failing if the product exceeds u64."""
    _check_operand(a, "a")
    _check_operand(b, "b")
    return _check_result(a * b)


def checked_div(a: int, b: int) -> int:
    """Truncating a / b, failing on division by zero."""
    _check_operand(a, "a")
    _check_operand(b, "b")
    if b == 0:
        raise MathOverflowError("Overflow in arithmetic operation: division by zero")
    return a // b


def checked_ceil_div(a: int, b: int) -> int:
    """Ceiling a / b, failing on division by zero."""
    _check_operand(a, "a")
    _check_operand(b, "b")
    if b == 0:
        raise MathOverflowError("Overflow in arithmetic operation: division by zero")
    return -(-a // b)


def checked_pow(base: int, exponent: int) -> int:
    """base ** exponent with a non-negative exponent, failing beyond u128."""
    _check_operand(base, "base")
    if exponent < 0:
        raise MathOverflowError(f"Negative power: {exponent}")
    return _check_result(base ** exponent, U128_MAX)


def _power_of_ten(power: int) -> int:
    if power > MAX_POWER_OF_TEN:
        raise MathOverflowError(f"Overflow in arithmetic operation: 10^{power}")
    return checked_pow(10, power)


def checked_decimal_mul(
    coefficient1: int,
    exponent1: int,
    coefficient2: int,
    exponent2: int,
    target_exponent: int,
) -> int:
    """
    Multiply two (mantissa, exponent) pairs and express the result at target_exponent.

    result = c1 * 10^e1 * c2 * 10^e2 / 10^target_exponent  (truncated)
    """
    _check_operand(coefficient1, "coefficient1")
    _check_operand(coefficient2, "coefficient2")
    if coefficient1 == 0 or coefficient2 == 0:
        return 0

    product = _check_result(coefficient1 * coefficient2, U128_MAX)
    target_power = exponent1 + exponent2 - target_exponent
    if target_power >= 0:
        scaled = _check_result(product * _power_of_ten(target_power), U128_MAX)
    else:
        scaled = product // _power_of_ten(-target_power)
    return _check_result(scaled)


def _decimal_quotient(
    coefficient1: int,
    exponent1: int,
    coefficient2: int,
    exponent2: int,
    target_exponent: int,
    ceil: bool,
) -> int:
    _check_operand(coefficient1, "coefficient1")
    _check_operand(coefficient2, "coefficient2")
    if coefficient2 == 0:
        raise MathOverflowError("Overflow in arithmetic operation: division by zero")
    if coefficient1 == 0:
        return 0

    target_power = exponent1 - exponent2 - target_exponent
    if target_power >= 0:
        dividend = _check_result(coefficient1 * _power_of_ten(target_power), U128_MAX)
        divisor = coefficient2
    else:
        dividend = coefficient1
        divisor = _check_result(coefficient2 * _power_of_ten(-target_power), U128_MAX)

    if ceil:
        return _check_result(-(-dividend // divisor))
    return _check_result(dividend // divisor)


def checked_decimal_div(
    coefficient1: int,
    exponent1: int,
    coefficient2: int,
    exponent2: int,
    target_exponent: int,
) -> int:
    """
    Divide two (mantissa, exponent) pairs and express the result at target_exponent.

    result = (c1 * 10^e1) / (c2 * 10^e2) / 10^target_exponent  (truncated)
    """
    return _decimal_quotient(
        coefficient1, exponent1, coefficient2, exponent2, target_exponent, ceil=False
    )


def checked_decimal_ceil_div(
    coefficient1: int,
    exponent1: int,
    coefficient2: int,
    exponent2: int,
    target_exponent: int,
) -> int:
    """Same as checked_decimal_div but rounds the quotient up."""
    return _decimal_quotient(
        coefficient1, exponent1, coefficient2, exponent2, target_exponent, ceil=True
    )


def scale_to_exponent(value: int, exponent: int, target_exponent: int) -> int:
    """
    Re-express value * 10^exponent at target_exponent (truncating).

    Raises:
        MathOverflowError: If the rescaled value does not fit in u64
    """
    _check_operand(value, "value")
    if target_exponent == exponent:
        return _check_result(value)
    delta = target_exponent - exponent
    if delta > 0:
        return _check_result(value // _power_of_ten(delta))
    return _check_result(value * _power_of_ten(-delta))


def checked_as_u64(value: Union[int, Decimal]) -> int:
    """
    Cast a rescaled value to an unsigned 64-bit amount.

    Decimals are truncated toward zero after the caller has already rescaled
    them to the target precision.

    Raises:
        MathOverflowError: If value is negative, not finite or exceeds u64
    """
    if isinstance(value, bool):
        raise TypeError("bool is not an amount")
    if isinstance(value, Decimal):
        if not value.is_finite():
            raise MathOverflowError(f"Cannot cast non-finite value {value}")
        value = int(value.to_integral_value(rounding=ROUND_DOWN))
    if not isinstance(value, int):
        raise TypeError(f"value must be int or Decimal, got {type(value).__name__}")
    return _check_result(value)


def to_scaled(amount: Decimal, exponent: int, rounding: str = ROUND_DOWN) -> int:
    """
    Convert a Decimal amount to an integer mantissa at the given exponent.

    Example:
        to_scaled(Decimal("150.25"), -6)  # -> 150_250_000
    """
    if not isinstance(amount, Decimal):
        amount = Decimal(str(amount))
    if not amount.is_finite():
        raise MathOverflowError(f"Cannot scale non-finite value {amount}")
    try:
        scaled = amount.scaleb(-exponent).to_integral_value(rounding=rounding)
    except InvalidOperation as exc:
        raise MathOverflowError(f"Cannot scale {amount}") from exc
    return checked_as_u64(scaled)


def from_scaled(value: int, exponent: int) -> Decimal:
    """Decimal view of value * 10^exponent, for display and pricing inputs."""
    return Decimal(value).scaleb(exponent)
