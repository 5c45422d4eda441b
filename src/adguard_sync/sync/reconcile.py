"""Key-indexed diffing of origin and replica snapshots."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Generic, Hashable, Iterable, TypeVar

K = TypeVar("K", bound=Hashable)
T = TypeVar("T")


@dataclass(frozen=True)
class DiffResult(Generic[K, T]):
    """Classification of every key seen in two snapshots.

    ``additions`` and ``updates`` carry the origin item (the desired value),
    ``removals`` carries the replica item. All three mappings enumerate in key
    order.
    """

    additions: dict[K, T] = field(default_factory=dict)
    removals: dict[K, T] = field(default_factory=dict)
    updates: dict[K, T] = field(default_factory=dict)
    unchanged: int = 0
    origin_duplicates: tuple[K, ...] = ()
    replica_duplicates: tuple[K, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not (self.additions or self.removals or self.updates)

    @property
    def change_count(self) -> int:
        return len(self.additions) + len(self.removals) + len(self.updates)


def _index(items: Iterable[T], key_of: Callable[[T], K]) -> tuple[dict[K, T], tuple[K, ...]]:
    indexed: dict[K, T] = {}
    duplicates: set[K] = set()
    for item in items:
        key = key_of(item)
        if key in indexed:
            duplicates.add(key)
        indexed[key] = item
    return indexed, tuple(sorted(duplicates))


def diff(
    origin: Iterable[T],
    replica: Iterable[T],
    key_of: Callable[[T], K],
    equal: Callable[[T, T], bool],
) -> DiffResult[K, T]:
    """Compute the changes that make ``replica`` match ``origin``.

    Duplicate keys inside one snapshot resolve to the last item seen; the
    colliding keys are reported on the result instead of raising.
    """
    origin_index, origin_duplicates = _index(origin, key_of)
    replica_index, replica_duplicates = _index(replica, key_of)

    additions: dict[K, T] = {}
    updates: dict[K, T] = {}
    removals: dict[K, T] = {}
    unchanged = 0
    for key in sorted(origin_index):
        desired = origin_index[key]
        if key not in replica_index:
            additions[key] = desired
        elif equal(desired, replica_index[key]):
            unchanged += 1
        else:
            updates[key] = desired
    for key in sorted(replica_index):
        if key not in origin_index:
            removals[key] = replica_index[key]

    return DiffResult(
        additions=additions,
        removals=removals,
        updates=updates,
        unchanged=unchanged,
        origin_duplicates=origin_duplicates,
        replica_duplicates=replica_duplicates,
    )
