"""
SQLAlchemy table models for the state store.

These models handle only persistence concerns. Column names match the
dataclass field names of the corresponding domain records one to one.
Amounts are BigInteger; the domain bounds them to a signed 64-bit range.
"""

from sqlalchemy import JSON, BigInteger, Boolean, CheckConstraint, Column, Integer, String
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class ChallengeRow(Base):
    __tablename__ = "challenges"

    challenge_id = Column(Integer, primary_key=True, autoincrement=False)
    name = Column(String(100), nullable=False)
    creator = Column(String(255), nullable=False, index=True)
    state = Column(String(20), nullable=False, index=True)

    goal = Column(BigInteger, nullable=False)
    duration = Column(BigInteger, nullable=False)
    min_contribution = Column(BigInteger, nullable=False)
    max_participants = Column(Integer, nullable=False)
    challenge_type = Column(String(32), nullable=False)
    penalty_rate = Column(Integer, nullable=False)
    voting_threshold = Column(Integer, nullable=False)
    location = Column(String(100), nullable=False)
    currency = Column(String(16), nullable=False)

    created_at = Column(BigInteger, nullable=False)
    start_time = Column(BigInteger, nullable=True)
    end_time = Column(BigInteger, nullable=True)
    closed_at = Column(BigInteger, nullable=True)

    oracle = Column(String(255), nullable=True)
    participant_count = Column(Integer, nullable=False, default=0)

    # Optimistic locking
    version = Column(Integer, nullable=False)

    __table_args__ = (
        CheckConstraint("participant_count >= 0", name="chk_participant_count_non_negative"),
        CheckConstraint("penalty_rate BETWEEN 0 AND 100", name="chk_penalty_rate_range"),
        CheckConstraint("end_time IS NULL OR end_time > start_time", name="chk_end_after_start"),
    )

    def __repr__(self) -> str:
        return f"<ChallengeRow(challenge_id={self.challenge_id}, state={self.state}, version={self.version})>"


class ParticipantRow(Base):
    __tablename__ = "participants"

    challenge_id = Column(Integer, primary_key=True, autoincrement=False)
    identity = Column(String(255), primary_key=True)
    contribution = Column(BigInteger, nullable=False)
    progress = Column(BigInteger, nullable=False, default=0)
    completed = Column(Boolean, nullable=False, default=False)
    claimed = Column(Boolean, nullable=False, default=False)
    extension_vote = Column(Boolean, nullable=True)
    join_index = Column(Integer, nullable=False)
    joined_at = Column(BigInteger, nullable=False)
    version = Column(Integer, nullable=False)

    __table_args__ = (
        CheckConstraint("contribution > 0", name="chk_contribution_positive"),
        CheckConstraint("progress >= 0", name="chk_progress_non_negative"),
    )

    def __repr__(self) -> str:
        return f"<ParticipantRow(challenge_id={self.challenge_id}, identity={self.identity}, progress={self.progress})>"


class ChallengeNameRow(Base):
    __tablename__ = "challenge_names"

    name = Column(String(100), primary_key=True)
    challenge_id = Column(Integer, nullable=False, unique=True)
    version = Column(Integer, nullable=False)


class FactoryStateRow(Base):
    __tablename__ = "factory_state"

    authority_id = Column(String(32), primary_key=True)
    admin = Column(String(255), nullable=False)
    max_challenges = Column(Integer, nullable=False)
    is_active = Column(Boolean, nullable=False)
    next_challenge_id = Column(Integer, nullable=False)
    version = Column(Integer, nullable=False)


class DistributorStateRow(Base):
    __tablename__ = "distributor_state"

    authority_id = Column(String(32), primary_key=True)
    distributor = Column(String(255), nullable=False)
    distribution_nonce = Column(Integer, nullable=False)
    version = Column(Integer, nullable=False)


class RewardPoolRow(Base):
    __tablename__ = "reward_pools"

    challenge_id = Column(Integer, primary_key=True, autoincrement=False)
    pool_balance = Column(BigInteger, nullable=False)
    reward_tiers = Column(JSON, nullable=False)
    total_contributed = Column(BigInteger, nullable=False)
    total_distributed = Column(BigInteger, nullable=False)
    winners_count = Column(Integer, nullable=False)
    winners = Column(JSON, nullable=True)
    is_active = Column(Boolean, nullable=False)
    is_distributed = Column(Boolean, nullable=False)
    created_at = Column(BigInteger, nullable=False)
    distributed_at = Column(BigInteger, nullable=True)
    version = Column(Integer, nullable=False)

    __table_args__ = (
        CheckConstraint("pool_balance >= 0", name="chk_pool_balance_non_negative"),
        CheckConstraint("total_distributed <= pool_balance", name="chk_distributed_within_pool"),
    )


class UserRewardRow(Base):
    __tablename__ = "user_rewards"

    identity = Column(String(255), primary_key=True)
    amount = Column(BigInteger, nullable=False)
    total_credited = Column(BigInteger, nullable=False)
    total_claimed = Column(BigInteger, nullable=False)
    version = Column(Integer, nullable=False)

    __table_args__ = (
        CheckConstraint("amount >= 0", name="chk_reward_non_negative"),
        CheckConstraint("total_claimed <= total_credited", name="chk_claimed_within_credited"),
    )


class DistributionLogRow(Base):
    __tablename__ = "distribution_logs"

    sequence = Column(Integer, primary_key=True, autoincrement=True)
    distribution_nonce = Column(Integer, nullable=False, index=True)
    challenge_id = Column(Integer, nullable=False, index=True)
    recipient = Column(String(255), nullable=False)
    rank = Column(Integer, nullable=False)
    amount = Column(BigInteger, nullable=False)
    distributor = Column(String(255), nullable=False)
    block_height = Column(BigInteger, nullable=False)


class LedgerIntentRow(Base):
    __tablename__ = "ledger_intents"

    sequence = Column(Integer, primary_key=True, autoincrement=True)
    kind = Column(String(16), nullable=False)
    amount = Column(BigInteger, nullable=False)
    identity = Column(String(255), nullable=False, index=True)
    challenge_id = Column(Integer, nullable=True)
    block_height = Column(BigInteger, nullable=False)
    dispatched = Column(Boolean, nullable=False, default=False, index=True)
