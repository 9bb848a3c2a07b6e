"""In-memory state store.

Suitable for tests and single-process deployments. One re-entrant lock
serializes all transactions; rollback restores a snapshot taken when the
outermost transaction began.
"""

import copy
from contextlib import contextmanager
from dataclasses import replace
from threading import RLock
from typing import Any, Callable, Dict, Iterator, List, Optional

from ...shared.kernel.repository import AppendOnlyLog, K, Outbox, Repository, T
from .store import StateStore


class InMemoryRepository(Repository[K, T]):
    """Dict-backed repository. Stores and returns deep copies."""

    def __init__(self, lock: RLock):
        self._lock = lock
        self._records: Dict[K, T] = {}

    def get(self, key: K) -> Optional[T]:
        with self._lock:
            record = self._records.get(key)
            return copy.deepcopy(record) if record is not None else None

    def put(self, key: K, record: T) -> T:
        with self._lock:
            current = self._records.get(key)
            version = current.version + 1 if current is not None else 1
            stored = replace(copy.deepcopy(record), version=version)
            self._records[key] = stored
            return copy.deepcopy(stored)

    def compare_and_set(self, key: K, expected_version: Optional[int], record: T) -> bool:
        with self._lock:
            current = self._records.get(key)
            if expected_version is None:
                if current is not None:
                    return False
                new_version = 1
            else:
                if current is None or current.version != expected_version:
                    return False
                new_version = expected_version + 1
            self._records[key] = replace(copy.deepcopy(record), version=new_version)
            return True

    def find_by(self, **criteria: Any) -> List[T]:
        with self._lock:
            return [
                copy.deepcopy(record)
                for record in self._records.values()
                if all(getattr(record, name) == value for name, value in criteria.items())
            ]

    def snapshot(self) -> Dict[K, T]:
        # Stored records are never mutated in place, a shallow copy is enough.
        return dict(self._records)

    def restore(self, snapshot: Dict[K, T]) -> None:
        self._records = snapshot


class InMemoryLog(AppendOnlyLog[T]):
    """List-backed append-only log; sequences start at 1."""

    def __init__(self, lock: RLock):
        self._lock = lock
        self._entries: List[T] = []

    def append(self, entry: T) -> T:
        with self._lock:
            stored = replace(copy.deepcopy(entry), sequence=len(self._entries) + 1)
            self._entries.append(stored)
            return copy.deepcopy(stored)

    def entries(self, predicate: Optional[Callable[[T], bool]] = None, **criteria: Any) -> List[T]:
        with self._lock:
            return [
                copy.deepcopy(e)
                for e in self._entries
                if all(getattr(e, name) == value for name, value in criteria.items())
                and (predicate is None or predicate(e))
            ]

    def snapshot(self) -> List[T]:
        return list(self._entries)

    def restore(self, snapshot: List[T]) -> None:
        self._entries = snapshot


class InMemoryOutbox(InMemoryLog[T], Outbox[T]):
    """In-memory log with a dispatched flag per entry."""

    def pending(self, limit: Optional[int] = None) -> List[T]:
        with self._lock:
            waiting = [copy.deepcopy(e) for e in self._entries if not e.dispatched]
            return waiting[:limit] if limit is not None else waiting

    def mark_dispatched(self, sequence: int) -> bool:
        with self._lock:
            index = sequence - 1
            if not 0 <= index < len(self._entries) or self._entries[index].dispatched:
                return False
            self._entries[index] = replace(self._entries[index], dispatched=True)
            return True


class InMemoryStateStore(StateStore):
    """State store held entirely in process memory."""

    def __init__(self):
        self._lock = RLock()
        self._depth = 0

        self.challenges = InMemoryRepository(self._lock)
        self.participants = InMemoryRepository(self._lock)
        self.challenge_names = InMemoryRepository(self._lock)
        self.factory_state = InMemoryRepository(self._lock)
        self.distributor_state = InMemoryRepository(self._lock)
        self.pools = InMemoryRepository(self._lock)
        self.user_rewards = InMemoryRepository(self._lock)
        self.distribution_log = InMemoryLog(self._lock)
        self.intents = InMemoryOutbox(self._lock)

        self._parts = [
            self.challenges,
            self.participants,
            self.challenge_names,
            self.factory_state,
            self.distributor_state,
            self.pools,
            self.user_rewards,
            self.distribution_log,
            self.intents,
        ]

    @contextmanager
    def transaction(self) -> Iterator[None]:
        with self._lock:
            if self._depth:
                self._depth += 1
                try:
                    yield
                finally:
                    self._depth -= 1
                return

            snapshots = [part.snapshot() for part in self._parts]
            self._depth = 1
            try:
                yield
            except BaseException:
                for part, snapshot in zip(self._parts, snapshots):
                    part.restore(snapshot)
                raise
            finally:
                self._depth = 0
