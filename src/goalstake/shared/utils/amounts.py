"""Integer amount helpers for ledger arithmetic.

All monetary values are non-negative Python integers in the smallest unit of
the challenge currency. Division always truncates toward zero; remainders are
never rounded up.
"""

from typing import Any

from ..exceptions import ErrorCode, InvalidFieldError, LimitExceededError

# Largest amount that fits a signed 64-bit column.
MAX_AMOUNT = 2 ** 63 - 1


def is_amount(value: Any) -> bool:
    """Check that value is an integer amount within bounds (bool excluded)."""
    return (
        isinstance(value, int)
        and not isinstance(value, bool)
        and 0 <= value <= MAX_AMOUNT
    )


def require_amount(value: Any, field: str, code: ErrorCode = ErrorCode.INVALID_AMOUNT) -> int:
    """Return value if it is a valid amount, otherwise raise InvalidFieldError."""
    if not is_amount(value):
        raise InvalidFieldError(
            f"{field} must be an integer between 0 and {MAX_AMOUNT}, got {value!r}",
            code,
            field=field,
        )
    return value


def percent_of(amount: int, percentage: int) -> int:
    """floor(amount * percentage / 100)."""
    return amount * percentage // 100


def checked_add(current: int, increment: int, field: str) -> int:
    """Add two amounts, refusing to cross MAX_AMOUNT."""
    total = current + increment
    if total > MAX_AMOUNT:
        raise LimitExceededError(
            f"{field} would exceed the maximum representable amount",
            ErrorCode.AMOUNT_OVERFLOW,
            context={"field": field, "current": current, "increment": increment},
        )
    return total
