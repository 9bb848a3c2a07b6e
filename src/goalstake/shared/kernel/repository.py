"""Repository pattern abstractions.

Records stored through these interfaces are plain dataclasses with an integer
``version`` field. Implementations hand out copies, so a caller mutating a
loaded record changes nothing until it writes the record back.
"""

from abc import ABC, abstractmethod
from dataclasses import replace
from typing import Any, Callable, Generic, Hashable, List, Optional, TypeVar

from ..exceptions import ConcurrencyError

K = TypeVar("K", bound=Hashable)
T = TypeVar("T")


class Repository(ABC, Generic[K, T]):
    """Keyed record storage with optimistic concurrency."""

    @abstractmethod
    def get(self, key: K) -> Optional[T]:
        """Get record by key, or None."""
        pass

    @abstractmethod
    def put(self, key: K, record: T) -> T:
        """Unconditionally write a record. Returns the stored copy."""
        pass

    @abstractmethod
    def compare_and_set(self, key: K, expected_version: Optional[int], record: T) -> bool:
        """
        Write record only if the stored version matches.

        Args:
            key: Record key
            expected_version: Version the caller read, or None when the key
                must not exist yet
            record: New record contents (its version field is ignored)

        Returns:
            True if written (stored version is now expected_version + 1, or 1
            for an insert), False if another writer got there first
        """
        pass

    @abstractmethod
    def find_by(self, **criteria: Any) -> List[T]:
        """Return records whose fields equal all given criteria."""
        pass

    def save(self, key: K, record: T, expected_version: Optional[int]) -> T:
        """
        compare_and_set that raises instead of returning False.

        Returns:
            The record as stored, with its new version

        Raises:
            ConcurrencyError: if the stored version no longer matches
        """
        if not self.compare_and_set(key, expected_version, record):
            raise ConcurrencyError(
                f"{type(record).__name__} {key!r} was modified concurrently",
                context={"key": repr(key), "expected_version": expected_version},
            )
        return replace(record, version=(expected_version or 0) + 1)


class AppendOnlyLog(ABC, Generic[T]):
    """Append-only, sequence-keyed log."""

    @abstractmethod
    def append(self, entry: T) -> T:
        """Append an entry. Returns the stored entry with its sequence set."""
        pass

    @abstractmethod
    def entries(self, predicate: Optional[Callable[[T], bool]] = None, **criteria: Any) -> List[T]:
        """
        All entries in sequence order.

        criteria are field equality filters applied by the store; predicate
        is applied to the remaining entries.
        """
        pass


class Outbox(AppendOnlyLog[T]):
    """Append-only log whose entries are handed off exactly once."""

    @abstractmethod
    def pending(self, limit: Optional[int] = None) -> List[T]:
        """Entries not yet dispatched, in sequence order."""
        pass

    @abstractmethod
    def mark_dispatched(self, sequence: int) -> bool:
        """Flag an entry as dispatched. Returns False if it already was."""
        pass
