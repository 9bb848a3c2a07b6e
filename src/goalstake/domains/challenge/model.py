"""
Challenge and participant records.

These are the rows of the Challenges and Participants tables. They carry no
behaviour beyond simple derived properties; all transitions live in
ChallengeEngine.
"""

from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional

from .enums import ChallengeState


@dataclass
class ChallengeRecord:
    """One challenge, keyed by challenge_id."""

    challenge_id: int
    name: str
    creator: str
    state: ChallengeState = ChallengeState.UNINITIALIZED

    # Configuration, fixed by initialize
    goal: int = 0
    duration: int = 0
    min_contribution: int = 0
    max_participants: int = 0
    challenge_type: str = ""
    penalty_rate: int = 0
    voting_threshold: int = 0
    location: str = ""
    currency: str = ""

    # Logical time (block heights)
    created_at: int = 0
    start_time: Optional[int] = None
    end_time: Optional[int] = None
    closed_at: Optional[int] = None

    oracle: Optional[str] = None
    participant_count: int = 0

    # Optimistic locking
    version: int = 0

    @property
    def is_active(self) -> bool:
        return self.state is ChallengeState.ACTIVE

    @property
    def status(self) -> bool:
        """Settlement status flag; mirrors is_active once the challenge closes."""
        return self.state is not ChallengeState.CLOSED

    def accepts_entries_at(self, block_height: int) -> bool:
        """True while the challenge is active and its end time has not been reached."""
        return self.is_active and self.end_time is not None and block_height < self.end_time

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["state"] = self.state.value
        data["is_active"] = self.is_active
        data["status"] = self.status
        return data


@dataclass
class ParticipantRecord:
    """One participant of one challenge, keyed by (challenge_id, identity)."""

    challenge_id: int
    identity: str
    contribution: int
    progress: int = 0
    completed: bool = False
    claimed: bool = False
    extension_vote: Optional[bool] = None
    join_index: int = 0
    joined_at: int = 0
    version: int = 0

    @property
    def key(self):
        return (self.challenge_id, self.identity)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ChallengeName:
    """Name registry entry; guarantees name uniqueness across the factory."""

    name: str
    challenge_id: int
    version: int = 0


@dataclass
class FactoryState:
    """Deployment-wide factory authority record."""

    admin: str
    max_challenges: int
    is_active: bool = True
    next_challenge_id: int = 0
    authority_id: str = "default"
    version: int = 0
