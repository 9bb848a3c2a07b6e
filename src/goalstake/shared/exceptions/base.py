"""Base exception hierarchy for the application.

Every failure surfaced by an engine is one of the kinds below. The kind says
what went wrong in general terms; the attached ``ErrorCode`` says exactly
which check failed. No operation mutates state before raising.
"""

from typing import Any, Dict, Optional

from .codes import ErrorCode


class GoalStakeError(Exception):
    """Base exception for all goalstake errors."""

    default_code: ErrorCode = ErrorCode.INVARIANT_VIOLATION

    def __init__(
        self,
        message: str,
        code: Optional[ErrorCode] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.context = context or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging and API responses."""
        return {
            "error_type": self.__class__.__name__,
            "error_code": self.code.value,
            "message": self.message,
            "context": self.context,
        }


class DomainError(GoalStakeError):
    """Base exception for domain-related errors."""
    pass


class ApplicationError(GoalStakeError):
    """Base exception for application layer errors."""
    pass


class NotAuthorizedError(DomainError):
    """Caller is not the identity allowed to perform the operation."""

    default_code = ErrorCode.NOT_AUTHORIZED


class InvalidFieldError(DomainError):
    """A supplied value is outside its allowed range or set."""

    def __init__(
        self,
        message: str,
        code: ErrorCode,
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        context = dict(context or {})
        if field:
            context["field"] = field
        super().__init__(message, code, context)
        self.field = field


class NotFoundError(DomainError):
    """Challenge, participant or pool does not exist."""

    default_code = ErrorCode.CHALLENGE_NOT_FOUND


class AlreadyExistsError(DomainError):
    """Entity already exists under the requested key."""


class StateConflictError(DomainError):
    """Operation is not allowed in the current lifecycle phase."""


class AlreadyClaimedError(DomainError):
    """Reward was already paid out."""

    default_code = ErrorCode.REWARD_ALREADY_CLAIMED


class InsufficientFundsError(DomainError):
    """Contribution, pool or reward balance is too small."""


class LimitExceededError(DomainError):
    """A count or amount ceiling would be crossed."""


class PercentageInvalidError(DomainError):
    """Reward tier percentages or rank ranges are malformed."""


class ConcurrencyError(ApplicationError):
    """Raised when a compare-and-set write lost a race."""

    default_code = ErrorCode.CONCURRENT_MODIFICATION


class InvariantViolationError(ApplicationError):
    """Raised when an accounting invariant check fails. Indicates a bug."""

    default_code = ErrorCode.INVARIANT_VIOLATION
