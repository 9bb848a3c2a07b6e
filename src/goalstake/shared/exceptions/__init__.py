from .base import (
    AlreadyClaimedError,
    AlreadyExistsError,
    ApplicationError,
    ConcurrencyError,
    DomainError,
    GoalStakeError,
    InsufficientFundsError,
    InvalidFieldError,
    InvariantViolationError,
    LimitExceededError,
    NotAuthorizedError,
    NotFoundError,
    PercentageInvalidError,
    StateConflictError,
)
from .codes import ErrorCode

__all__ = [
    "AlreadyClaimedError",
    "AlreadyExistsError",
    "ApplicationError",
    "ConcurrencyError",
    "DomainError",
    "ErrorCode",
    "GoalStakeError",
    "InsufficientFundsError",
    "InvalidFieldError",
    "InvariantViolationError",
    "LimitExceededError",
    "NotAuthorizedError",
    "NotFoundError",
    "PercentageInvalidError",
    "StateConflictError",
]
