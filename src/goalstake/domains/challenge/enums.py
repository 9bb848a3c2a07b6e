"""Domain enums for the challenge lifecycle."""

from enum import Enum


class ChallengeState(str, Enum):
    """Challenge lifecycle states."""

    UNINITIALIZED = "UNINITIALIZED"
    ACTIVE = "ACTIVE"
    CLOSED = "CLOSED"

    def can_transition_to(self, new_state: "ChallengeState") -> bool:
        """Validate state transitions."""
        valid_transitions = {
            ChallengeState.UNINITIALIZED: {ChallengeState.ACTIVE},
            ChallengeState.ACTIVE: {ChallengeState.CLOSED},
            ChallengeState.CLOSED: set(),  # Terminal
        }
        return new_state in valid_transitions[self]
