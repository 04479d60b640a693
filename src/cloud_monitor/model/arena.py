from __future__ import annotations

from typing import Dict, Generic, Iterable, Iterator, List, Optional, Protocol, Set, TypeVar

from ..util.errors import DuplicateResourceError, PoolFrozenError
from .kinds import ResourceKind


class _Identified(Protocol):
    id: str


R = TypeVar("R", bound=_Identified)


class Arena(Generic[R]):
    """
    Unclaimed resources of one kind, keyed by ID.

    Iteration is always in ID order so that every pass over an arena (and every
    index derived from one) is deterministic from run to run.
    """

    def __init__(self, kind: ResourceKind, items: Iterable[R] = ()) -> None:
        self.kind = kind
        self._items: Dict[str, R] = {}
        self._claimed: Set[str] = set()
        self._frozen = False
        for item in items:
            self.add(item)

    def add(self, item: R) -> None:
        self._check_mutable()
        if item.id in self._items or item.id in self._claimed:
            raise DuplicateResourceError(f"Duplicate {self.kind.value} id in snapshot: {item.id}")
        self._items[item.id] = item

    def get(self, resource_id: str) -> Optional[R]:
        return self._items.get(resource_id)

    def take(self, resource_id: str) -> Optional[R]:
        """
        Remove and return the resource, recording it as claimed. Returns None
        when the ID is not (or no longer) in the arena.
        """
        self._check_mutable()
        item = self._items.pop(resource_id, None)
        if item is not None:
            self._claimed.add(resource_id)
        return item

    def release(self, resource_id: str) -> Optional[R]:
        """
        Remove a resource without recording a claim. Used when a shared entry
        goes back to the shared pool instead of staying with a region.
        """
        self._check_mutable()
        return self._items.pop(resource_id, None)

    def freeze(self) -> None:
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    @property
    def claimed_ids(self) -> frozenset[str]:
        return frozenset(self._claimed)

    def ids(self) -> List[str]:
        return sorted(self._items)

    def values(self) -> List[R]:
        return [self._items[key] for key in sorted(self._items)]

    def __iter__(self) -> Iterator[R]:
        return iter(self.values())

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, resource_id: object) -> bool:
        return resource_id in self._items

    def __repr__(self) -> str:
        return f"Arena({self.kind.value}, unclaimed={len(self._items)}, claimed={len(self._claimed)})"

    def _check_mutable(self) -> None:
        if self._frozen:
            raise PoolFrozenError(f"{self.kind.value} pool is frozen; claim stages already completed")
