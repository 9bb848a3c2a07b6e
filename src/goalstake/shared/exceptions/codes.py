"""Error codes carried by every GoalStakeError."""

from enum import Enum


class ErrorCode(str, Enum):
    """Specific failure conditions, grouped by error kind."""

    # NotAuthorized
    NOT_AUTHORIZED = "NOT_AUTHORIZED"

    # InvalidField
    INVALID_NAME = "INVALID_NAME"
    INVALID_GOAL = "INVALID_GOAL"
    INVALID_DURATION = "INVALID_DURATION"
    INVALID_MIN_CONTRIBUTION = "INVALID_MIN_CONTRIBUTION"
    INVALID_MAX_PARTICIPANTS = "INVALID_MAX_PARTICIPANTS"
    INVALID_CHALLENGE_TYPE = "INVALID_CHALLENGE_TYPE"
    INVALID_PENALTY_RATE = "INVALID_PENALTY_RATE"
    INVALID_VOTING_THRESHOLD = "INVALID_VOTING_THRESHOLD"
    INVALID_LOCATION = "INVALID_LOCATION"
    INVALID_CURRENCY = "INVALID_CURRENCY"
    INVALID_AMOUNT = "INVALID_AMOUNT"
    INVALID_PROGRESS = "INVALID_PROGRESS"
    INVALID_IDENTITY = "INVALID_IDENTITY"
    INVALID_MAX_CHALLENGES = "INVALID_MAX_CHALLENGES"
    NO_WINNERS = "NO_WINNERS"

    # NotFound
    CHALLENGE_NOT_FOUND = "CHALLENGE_NOT_FOUND"
    NOT_JOINED = "NOT_JOINED"
    POOL_NOT_FOUND = "POOL_NOT_FOUND"
    WINNERS_NOT_REGISTERED = "WINNERS_NOT_REGISTERED"

    # AlreadyExists
    ALREADY_JOINED = "ALREADY_JOINED"
    NAME_TAKEN = "NAME_TAKEN"
    POOL_EXISTS = "POOL_EXISTS"

    # StateConflict
    CHALLENGE_NOT_ACTIVE = "CHALLENGE_NOT_ACTIVE"
    CHALLENGE_ENDED = "CHALLENGE_ENDED"
    CHALLENGE_STILL_ACTIVE = "CHALLENGE_STILL_ACTIVE"
    ALREADY_INITIALIZED = "ALREADY_INITIALIZED"
    INVALID_END_TIME = "INVALID_END_TIME"
    INVALID_STATUS = "INVALID_STATUS"
    FACTORY_PAUSED = "FACTORY_PAUSED"
    POOL_ACTIVE = "POOL_ACTIVE"
    POOL_LOCKED = "POOL_LOCKED"
    REWARDS_ALREADY_DISTRIBUTED = "REWARDS_ALREADY_DISTRIBUTED"
    DISTRIBUTION_COMPLETED = "DISTRIBUTION_COMPLETED"

    # AlreadyClaimed
    REWARD_ALREADY_CLAIMED = "REWARD_ALREADY_CLAIMED"

    # InsufficientFunds
    INSUFFICIENT_CONTRIBUTION = "INSUFFICIENT_CONTRIBUTION"
    INSUFFICIENT_POOL = "INSUFFICIENT_POOL"
    NO_REWARDS_AVAILABLE = "NO_REWARDS_AVAILABLE"

    # LimitExceeded
    MAX_PARTICIPANTS_EXCEEDED = "MAX_PARTICIPANTS_EXCEEDED"
    MAX_CHALLENGES_EXCEEDED = "MAX_CHALLENGES_EXCEEDED"
    AMOUNT_OVERFLOW = "AMOUNT_OVERFLOW"

    # PercentageInvalid
    EMPTY_REWARD_TIERS = "EMPTY_REWARD_TIERS"
    INVALID_PERCENTAGE = "INVALID_PERCENTAGE"
    INVALID_TIER_RANGE = "INVALID_TIER_RANGE"
    PERCENT_SUM_EXCEEDS_100 = "PERCENT_SUM_EXCEEDS_100"

    # Application
    CONCURRENT_MODIFICATION = "CONCURRENT_MODIFICATION"
    INVARIANT_VIOLATION = "INVARIANT_VIOLATION"
