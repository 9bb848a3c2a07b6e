"""
Challenge Rules - Pure Business Logic

Field validation and penalty arithmetic for challenges.
No storage access, no side effects.

Checks run in declared field order and stop at the first failure, so the
same bad input always reports the same error.
"""

from dataclasses import dataclass
from typing import Any, Sequence

from ...shared.exceptions import ErrorCode, InvalidFieldError
from ...shared.utils.amounts import MAX_AMOUNT, percent_of


@dataclass(frozen=True)
class ChallengeParameters:
    """Challenge configuration as supplied by the creator."""

    goal: int
    duration: int
    min_contribution: int
    max_participants: int
    challenge_type: str
    penalty_rate: int
    voting_threshold: int
    location: str
    currency: str


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_positive_amount(value: Any) -> bool:
    return _is_int(value) and 0 < value <= MAX_AMOUNT


class ChallengeRules:
    """
    Validation rules shared by the factory and the lifecycle engine.

    Allowed types and currencies are passed in because the two callers accept
    slightly different sets.
    """

    @staticmethod
    def validate_parameters(
        params: ChallengeParameters,
        allowed_types: Sequence[str],
        allowed_currencies: Sequence[str],
        max_participants: int = 100,
        max_location_length: int = 100,
    ) -> None:
        """
        Validate every configuration field.

        Raises:
            InvalidFieldError: for the first field that fails, carrying the
                field's own error code
        """
        if not _is_positive_amount(params.goal):
            raise InvalidFieldError("goal must be a positive integer", ErrorCode.INVALID_GOAL, field="goal")

        if not _is_positive_amount(params.duration):
            raise InvalidFieldError(
                "duration must be a positive integer", ErrorCode.INVALID_DURATION, field="duration"
            )

        if not _is_positive_amount(params.min_contribution):
            raise InvalidFieldError(
                "min_contribution must be a positive integer",
                ErrorCode.INVALID_MIN_CONTRIBUTION,
                field="min_contribution",
            )

        if not (_is_int(params.max_participants) and 1 <= params.max_participants <= max_participants):
            raise InvalidFieldError(
                f"max_participants must be between 1 and {max_participants}",
                ErrorCode.INVALID_MAX_PARTICIPANTS,
                field="max_participants",
            )

        if params.challenge_type not in allowed_types:
            raise InvalidFieldError(
                f"challenge_type must be one of {list(allowed_types)}",
                ErrorCode.INVALID_CHALLENGE_TYPE,
                field="challenge_type",
            )

        if not (_is_int(params.penalty_rate) and 0 <= params.penalty_rate <= 100):
            raise InvalidFieldError(
                "penalty_rate must be between 0 and 100", ErrorCode.INVALID_PENALTY_RATE, field="penalty_rate"
            )

        if not (_is_int(params.voting_threshold) and 1 <= params.voting_threshold <= 100):
            raise InvalidFieldError(
                "voting_threshold must be between 1 and 100",
                ErrorCode.INVALID_VOTING_THRESHOLD,
                field="voting_threshold",
            )

        if not (isinstance(params.location, str) and 0 < len(params.location) <= max_location_length):
            raise InvalidFieldError(
                f"location must be 1 to {max_location_length} characters",
                ErrorCode.INVALID_LOCATION,
                field="location",
            )

        if params.currency not in allowed_currencies:
            raise InvalidFieldError(
                f"currency must be one of {list(allowed_currencies)}",
                ErrorCode.INVALID_CURRENCY,
                field="currency",
            )

    @staticmethod
    def validate_name(name: Any, max_length: int = 100) -> None:
        if not (isinstance(name, str) and 0 < len(name) <= max_length):
            raise InvalidFieldError(
                f"name must be 1 to {max_length} characters", ErrorCode.INVALID_NAME, field="name"
            )

    @staticmethod
    def validate_identity(identity: Any, field: str = "identity") -> None:
        if not (isinstance(identity, str) and identity):
            raise InvalidFieldError(
                f"{field} must be a non-empty identity", ErrorCode.INVALID_IDENTITY, field=field
            )

    @staticmethod
    def is_goal_reached(progress: int, goal: int) -> bool:
        return progress >= goal

    @staticmethod
    def compute_penalty(contribution: int, penalty_rate: int) -> int:
        """
        Penalty owed by a participant who missed the goal.

        Formula: floor(contribution * penalty_rate / 100)
        """
        return percent_of(contribution, penalty_rate)
