"""SQLAlchemy-backed state store.

Repositories issue Core statements against the tables declared in
``models`` through the session of the current transaction. Compare-and-set
is a conditional ``UPDATE ... WHERE version = :expected``; the row count
says whether the write won.
"""

import threading
from contextlib import contextmanager, nullcontext
from dataclasses import fields, replace
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple, Type, Union

import structlog
from sqlalchemy import Table, and_, create_engine, insert, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ...domains.challenge.enums import ChallengeState
from ...domains.challenge.model import ChallengeName, ChallengeRecord, FactoryState, ParticipantRecord
from ...domains.ledger.intents import IntentKind, LedgerIntent
from ...domains.rewards.model import ChallengePool, DistributionLogEntry, DistributorState, RewardTier, UserReward
from ...shared.exceptions import ApplicationError, ConcurrencyError
from ...shared.kernel.repository import AppendOnlyLog, K, Outbox, Repository, T
from .models import (
    Base,
    ChallengeNameRow,
    ChallengeRow,
    DistributionLogRow,
    DistributorStateRow,
    FactoryStateRow,
    LedgerIntentRow,
    ParticipantRow,
    RewardPoolRow,
    UserRewardRow,
)
from .store import StateStore

logger = structlog.get_logger(__name__)

Codec = Dict[str, Callable[[Any], Any]]


class _RecordMapper:
    """Maps a record dataclass to and from a row dict with the same field names."""

    def __init__(self, record_type: Type, encoders: Optional[Codec] = None, decoders: Optional[Codec] = None):
        self.record_type = record_type
        self.field_names = [f.name for f in fields(record_type)]
        self.encoders = encoders or {}
        self.decoders = decoders or {}

    def to_row(self, record: Any) -> Dict[str, Any]:
        return {name: self.encode(name, getattr(record, name)) for name in self.field_names}

    def encode(self, name: str, value: Any) -> Any:
        encode = self.encoders.get(name)
        return encode(value) if encode and value is not None else value

    def from_row(self, row: Any) -> Any:
        values = {}
        for name in self.field_names:
            value = row[name]
            decode = self.decoders.get(name)
            values[name] = decode(value) if decode and value is not None else value
        return self.record_type(**values)


class SqlAlchemyRepository(Repository[K, T]):
    """Repository over one table keyed by one or more primary-key columns."""

    def __init__(self, store: "SqlAlchemyStateStore", table: Table, key_columns: Sequence[str], mapper: _RecordMapper):
        self._store = store
        self._table = table
        self._key_columns = tuple(key_columns)
        self._mapper = mapper

    def _key_clause(self, key: Any):
        values = key if isinstance(key, tuple) else (key,)
        return and_(*[self._table.c[column] == value for column, value in zip(self._key_columns, values)])

    def get(self, key: K) -> Optional[T]:
        session = self._store.session
        row = session.execute(select(self._table).where(self._key_clause(key))).mappings().first()
        return self._mapper.from_row(row) if row is not None else None

    def put(self, key: K, record: T) -> T:
        session = self._store.session
        current = self.get(key)
        row = self._mapper.to_row(record)
        if current is None:
            row["version"] = 1
            session.execute(insert(self._table).values(**row))
        else:
            row["version"] = current.version + 1
            session.execute(update(self._table).where(self._key_clause(key)).values(**row))
        return replace(record, version=row["version"])

    def compare_and_set(self, key: K, expected_version: Optional[int], record: T) -> bool:
        session = self._store.session
        row = self._mapper.to_row(record)

        if expected_version is None:
            if self.get(key) is not None:
                return False
            row["version"] = 1
            try:
                session.execute(insert(self._table).values(**row))
            except IntegrityError as e:
                raise ConcurrencyError(
                    f"{self._table.name} {key!r} was inserted concurrently",
                    context={"key": repr(key)},
                ) from e
            return True

        row["version"] = expected_version + 1
        result = session.execute(
            update(self._table)
            .where(self._key_clause(key), self._table.c.version == expected_version)
            .values(**row)
        )
        return result.rowcount == 1

    def find_by(self, **criteria: Any) -> List[T]:
        session = self._store.session
        statement = select(self._table).order_by(*[self._table.c[c] for c in self._key_columns])
        for name, value in criteria.items():
            statement = statement.where(self._table.c[name] == self._mapper.encode(name, value))
        return [self._mapper.from_row(row) for row in session.execute(statement).mappings()]


class SqlAlchemyLog(AppendOnlyLog[T]):
    """Append-only log over a table with an autoincrement ``sequence`` key."""

    def __init__(self, store: "SqlAlchemyStateStore", table: Table, mapper: _RecordMapper):
        self._store = store
        self._table = table
        self._mapper = mapper

    def append(self, entry: T) -> T:
        row = self._mapper.to_row(entry)
        row.pop("sequence", None)
        result = self._store.session.execute(insert(self._table).values(**row))
        return replace(entry, sequence=result.inserted_primary_key[0])

    def entries(self, predicate: Optional[Callable[[T], bool]] = None, **criteria: Any) -> List[T]:
        statement = select(self._table).order_by(self._table.c.sequence)
        for name, value in criteria.items():
            statement = statement.where(self._table.c[name] == self._mapper.encode(name, value))
        records = [self._mapper.from_row(row) for row in self._store.session.execute(statement).mappings()]
        return [r for r in records if predicate is None or predicate(r)]


class SqlAlchemyOutbox(SqlAlchemyLog[T], Outbox[T]):
    """Outbox over a table with a ``dispatched`` flag."""

    def pending(self, limit: Optional[int] = None) -> List[T]:
        statement = (
            select(self._table)
            .where(self._table.c.dispatched.is_(False))
            .order_by(self._table.c.sequence)
        )
        if limit is not None:
            statement = statement.limit(limit)
        return [self._mapper.from_row(row) for row in self._store.session.execute(statement).mappings()]

    def mark_dispatched(self, sequence: int) -> bool:
        result = self._store.session.execute(
            update(self._table)
            .where(self._table.c.sequence == sequence, self._table.c.dispatched.is_(False))
            .values(dispatched=True)
        )
        return result.rowcount == 1


def _encode_tiers(tiers: List[RewardTier]) -> List[Dict[str, int]]:
    return [tier.to_dict() for tier in tiers]


def _decode_tiers(data: List[Dict[str, int]]) -> List[RewardTier]:
    return [RewardTier.from_dict(item) for item in data]


class SqlAlchemyStateStore(StateStore):
    """
    State store on any SQLAlchemy-supported database.

    One session per outermost transaction, tracked per thread.
    """

    def __init__(self, url_or_engine: Union[str, Engine], echo: bool = False):
        if isinstance(url_or_engine, Engine):
            self.engine = url_or_engine
        else:
            self.engine = self._create_engine(url_or_engine, echo)

        self._session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)
        self._local = threading.local()
        # StaticPool hands every session the same connection, so transactions must not overlap.
        self._serial_lock = threading.RLock() if isinstance(self.engine.pool, StaticPool) else None

        tables = Base.metadata.tables
        self.challenges = SqlAlchemyRepository(
            self,
            tables[ChallengeRow.__tablename__],
            ("challenge_id",),
            _RecordMapper(
                ChallengeRecord,
                encoders={"state": lambda s: s.value},
                decoders={"state": ChallengeState},
            ),
        )
        self.participants = SqlAlchemyRepository(
            self, tables[ParticipantRow.__tablename__], ("challenge_id", "identity"), _RecordMapper(ParticipantRecord)
        )
        self.challenge_names = SqlAlchemyRepository(
            self, tables[ChallengeNameRow.__tablename__], ("name",), _RecordMapper(ChallengeName)
        )
        self.factory_state = SqlAlchemyRepository(
            self, tables[FactoryStateRow.__tablename__], ("authority_id",), _RecordMapper(FactoryState)
        )
        self.distributor_state = SqlAlchemyRepository(
            self, tables[DistributorStateRow.__tablename__], ("authority_id",), _RecordMapper(DistributorState)
        )
        self.pools = SqlAlchemyRepository(
            self,
            tables[RewardPoolRow.__tablename__],
            ("challenge_id",),
            _RecordMapper(
                ChallengePool,
                encoders={"reward_tiers": _encode_tiers, "winners": list},
                decoders={"reward_tiers": _decode_tiers, "winners": list},
            ),
        )
        self.user_rewards = SqlAlchemyRepository(
            self, tables[UserRewardRow.__tablename__], ("identity",), _RecordMapper(UserReward)
        )
        self.distribution_log = SqlAlchemyLog(
            self, tables[DistributionLogRow.__tablename__], _RecordMapper(DistributionLogEntry)
        )
        self.intents = SqlAlchemyOutbox(
            self,
            tables[LedgerIntentRow.__tablename__],
            _RecordMapper(
                LedgerIntent,
                encoders={"kind": lambda k: k.value},
                decoders={"kind": IntentKind},
            ),
        )

    @staticmethod
    def _create_engine(url: str, echo: bool) -> Engine:
        if url in ("sqlite://", "sqlite:///:memory:"):
            # Single shared connection so every session sees the same in-memory database.
            return create_engine(
                url,
                echo=echo,
                poolclass=StaticPool,
                connect_args={"check_same_thread": False},
            )
        return create_engine(url, echo=echo)

    def create_all(self) -> None:
        """Create all tables."""
        Base.metadata.create_all(self.engine)
        logger.info("State store tables created", url=str(self.engine.url))

    def drop_all(self) -> None:
        """Drop all tables."""
        Base.metadata.drop_all(self.engine)

    def dispose(self) -> None:
        self.engine.dispose()

    @property
    def session(self) -> Session:
        session = getattr(self._local, "session", None)
        if session is None:
            raise ApplicationError("No active transaction; wrap store access in store.transaction()")
        return session

    @contextmanager
    def transaction(self) -> Iterator[None]:
        if getattr(self._local, "session", None) is not None:
            yield
            return

        with self._serial_lock or nullcontext():
            session = self._session_factory()
            self._local.session = session
            try:
                with session.begin():
                    yield
            finally:
                self._local.session = None
                session.close()
