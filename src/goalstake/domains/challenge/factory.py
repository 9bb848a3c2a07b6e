"""
Challenge Factory.

Mints challenge ids, keeps challenge names unique and holds the global
admin, pause switch and challenge cap. The factory state is one record in
the store, seeded by install() and changed only by the admin operations
below.
"""

from dataclasses import replace
from typing import Any, Dict, Optional

import structlog

from ...core.event_bus import EventBus
from ...infrastructure.common.context import CallContext
from ...infrastructure.config.settings import ChallengeRulesConfig
from ...infrastructure.logging.structured_logger import log_rejections
from ...infrastructure.persistence.store import DEFAULT_AUTHORITY, StateStore
from ...shared.exceptions import (
    AlreadyExistsError,
    ApplicationError,
    ErrorCode,
    InvalidFieldError,
    LimitExceededError,
    NotAuthorizedError,
    StateConflictError,
)
from .model import ChallengeName, ChallengeRecord, FactoryState
from .rules import ChallengeParameters, ChallengeRules

logger = structlog.get_logger(__name__)


class ChallengeFactory:
    """Creates challenges and administers the factory switches."""

    def __init__(
        self,
        store: StateStore,
        rules: Optional[ChallengeRulesConfig] = None,
        event_bus: Optional[EventBus] = None,
        authority_id: str = DEFAULT_AUTHORITY,
    ):
        self.store = store
        self.rules = rules or ChallengeRulesConfig()
        self.event_bus = event_bus
        self.authority_id = authority_id

    def install(self, admin: str, max_challenges: int) -> FactoryState:
        """
        Seed the factory state. Does nothing if it already exists.

        Returns:
            The stored factory state
        """
        ChallengeRules.validate_identity(admin, "admin")
        with self.store.transaction():
            existing = self.store.factory_state.get(self.authority_id)
            if existing is not None:
                return existing
            state = self.store.factory_state.save(
                self.authority_id,
                FactoryState(admin=admin, max_challenges=max_challenges, authority_id=self.authority_id),
                None,
            )

        logger.info("Challenge factory installed", admin=admin, max_challenges=max_challenges)
        return state

    def create_challenge(
        self,
        ctx: CallContext,
        name: str,
        goal: int,
        duration: int,
        min_contribution: int,
        max_participants: int,
        challenge_type: str,
        penalty_rate: int,
        voting_threshold: int,
        location: str,
        currency: str,
    ) -> int:
        """
        Create a challenge owned by the caller.

        The challenge starts UNINITIALIZED; the creator opens it with
        ChallengeEngine.initialize. Ids are issued sequentially from 0.

        Returns:
            The new challenge id

        Raises:
            StateConflictError: FACTORY_PAUSED
            LimitExceededError: MAX_CHALLENGES_EXCEEDED
            InvalidFieldError: INVALID_NAME or the first failing field
            AlreadyExistsError: NAME_TAKEN
        """
        params = ChallengeParameters(
            goal=goal,
            duration=duration,
            min_contribution=min_contribution,
            max_participants=max_participants,
            challenge_type=challenge_type,
            penalty_rate=penalty_rate,
            voting_threshold=voting_threshold,
            location=location,
            currency=currency,
        )

        with log_rejections(logger, "create_challenge", name=name, **ctx.to_log_fields()):
            with self.store.transaction():
                state = self._load_state()
                if not state.is_active:
                    raise StateConflictError("Challenge factory is paused", ErrorCode.FACTORY_PAUSED)
                if state.next_challenge_id >= state.max_challenges:
                    raise LimitExceededError(
                        f"Challenge cap of {state.max_challenges} reached",
                        ErrorCode.MAX_CHALLENGES_EXCEEDED,
                        context={"max_challenges": state.max_challenges},
                    )

                ChallengeRules.validate_name(name, self.rules.max_name_length)
                ChallengeRules.validate_parameters(
                    params,
                    allowed_types=self.rules.factory_challenge_types,
                    allowed_currencies=self.rules.factory_currencies,
                    max_participants=self.rules.max_participants,
                    max_location_length=self.rules.max_location_length,
                )
                if self.store.challenge_names.get(name) is not None:
                    raise AlreadyExistsError(f"Challenge name {name!r} is taken", ErrorCode.NAME_TAKEN)

                challenge_id = state.next_challenge_id
                self.store.factory_state.save(
                    self.authority_id,
                    replace(state, next_challenge_id=challenge_id + 1),
                    state.version,
                )
                self.store.challenge_names.save(name, ChallengeName(name=name, challenge_id=challenge_id), None)
                self.store.challenges.save(
                    challenge_id,
                    ChallengeRecord(
                        challenge_id=challenge_id,
                        name=name,
                        creator=ctx.caller,
                        goal=goal,
                        duration=duration,
                        min_contribution=min_contribution,
                        max_participants=max_participants,
                        challenge_type=challenge_type,
                        penalty_rate=penalty_rate,
                        voting_threshold=voting_threshold,
                        location=location,
                        currency=currency,
                        created_at=ctx.block_height,
                    ),
                    None,
                )

        logger.info("Challenge created", challenge_id=challenge_id, name=name, **ctx.to_log_fields())
        self._emit("CHALLENGE_CREATED", {
            "challenge_id": challenge_id,
            "name": name,
            "creator": ctx.caller,
            "challenge_type": challenge_type,
            "currency": currency,
        })
        return challenge_id

    def pause(self, ctx: CallContext) -> FactoryState:
        state = self._update_as_admin(ctx, "pause", is_active=False)
        self._emit("FACTORY_PAUSED", {"admin": ctx.caller})
        return state

    def resume(self, ctx: CallContext) -> FactoryState:
        state = self._update_as_admin(ctx, "resume", is_active=True)
        self._emit("FACTORY_RESUMED", {"admin": ctx.caller})
        return state

    def transfer_admin(self, ctx: CallContext, new_admin: str) -> FactoryState:
        state = self._update_as_admin(
            ctx,
            "transfer_admin",
            check=lambda _: ChallengeRules.validate_identity(new_admin, "new_admin"),
            admin=new_admin,
        )
        self._emit("FACTORY_ADMIN_TRANSFERRED", {"previous_admin": ctx.caller, "new_admin": new_admin})
        return state

    def set_max_challenges(self, ctx: CallContext, new_max: int) -> FactoryState:
        """
        Change the challenge cap.

        Raises:
            InvalidFieldError: INVALID_MAX_CHALLENGES if new_max does not exceed
                the next id to be issued
        """

        def check(state: FactoryState) -> None:
            valid = isinstance(new_max, int) and not isinstance(new_max, bool)
            if not valid or new_max <= state.next_challenge_id:
                raise InvalidFieldError(
                    f"max_challenges must be greater than {state.next_challenge_id}",
                    ErrorCode.INVALID_MAX_CHALLENGES,
                    field="max_challenges",
                )

        state = self._update_as_admin(ctx, "set_max_challenges", check=check, max_challenges=new_max)
        self._emit("MAX_CHALLENGES_UPDATED", {"max_challenges": new_max})
        return state

    def get_challenge_id_by_name(self, name: str) -> Optional[int]:
        with self.store.transaction():
            entry = self.store.challenge_names.get(name)
        return entry.challenge_id if entry is not None else None

    def get_state(self) -> Optional[FactoryState]:
        with self.store.transaction():
            return self.store.factory_state.get(self.authority_id)

    def _update_as_admin(self, ctx: CallContext, operation: str, check=None, **changes: Any) -> FactoryState:
        with log_rejections(logger, operation, **ctx.to_log_fields()):
            with self.store.transaction():
                state = self._load_state()
                if ctx.caller != state.admin:
                    raise NotAuthorizedError("Only the factory admin may do this", context={"operation": operation})
                if check is not None:
                    check(state)
                state = self.store.factory_state.save(self.authority_id, replace(state, **changes), state.version)

        logger.info("Factory updated", operation=operation, changes=changes, **ctx.to_log_fields())
        return state

    def _load_state(self) -> FactoryState:
        state = self.store.factory_state.get(self.authority_id)
        if state is None:
            raise ApplicationError("Challenge factory is not installed")
        return state

    def _emit(self, event_type: str, payload: Dict[str, Any]) -> None:
        if self.event_bus is not None:
            self.event_bus.emit(event_type, payload)
