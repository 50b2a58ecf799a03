"""
Store collaborator contract.

The coordinators only talk to persisted records through this narrow
interface: look up by id, insert, patch by id, filtered query and counts.
Records cross the boundary as plain dicts so that both the in-memory and
the SQLAlchemy backends look the same to callers.
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence

FILTER_OPS = {"eq", "in", "lt", "gte", "lte"}


@dataclass(frozen=True)
class Filter:
    """A single field predicate."""

    field: str
    op: str
    value: Any

    def matches(self, record: Dict[str, Any]) -> bool:
        """Evaluate the predicate against a record dict."""
        actual = record.get(self.field)
        if self.op == "eq":
            return actual == self.value
        if self.op == "in":
            return actual in self.value
        if actual is None:
            return False
        if self.op == "lt":
            return actual < self.value
        if self.op == "gte":
            return actual >= self.value
        if self.op == "lte":
            return actual <= self.value
        raise ValueError(f"Unsupported filter op: {self.op}")


def eq(field: str, value: Any) -> Filter:
    return Filter(field, "eq", value)


def in_(field: str, values: Iterable[Any]) -> Filter:
    return Filter(field, "in", tuple(values))


def lt(field: str, value: Any) -> Filter:
    return Filter(field, "lt", value)


def gte(field: str, value: Any) -> Filter:
    return Filter(field, "gte", value)


def lte(field: str, value: Any) -> Filter:
    return Filter(field, "lte", value)


class Collection:
    """Base class for one persisted entity collection."""

    name: str = "record"

    async def find_by_id(
        self, record_id: str, populate: Sequence[str] = ()
    ) -> Optional[Dict[str, Any]]:
        """
        Look up a record.

        Args:
            record_id: Record identifier
            populate: Reference names to expand into nested records

        Returns:
            The record dict, or None when the id does not resolve
        """
        raise NotImplementedError("Collection must implement find_by_id()")

    async def insert(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Insert a record; the store assigns ``id`` and timestamps."""
        raise NotImplementedError("Collection must implement insert()")

    async def update_by_id(
        self,
        record_id: str,
        patch: Dict[str, Any],
        populate: Sequence[str] = (),
    ) -> Optional[Dict[str, Any]]:
        """Apply a partial update; returns the updated record or None."""
        raise NotImplementedError("Collection must implement update_by_id()")

    async def query(
        self,
        *filters: Filter,
        order_by: Optional[str] = None,
        descending: bool = False,
        populate: Sequence[str] = (),
    ) -> List[Dict[str, Any]]:
        """Return all records matching every filter."""
        raise NotImplementedError("Collection must implement query()")

    async def count_where(self, *filters: Filter) -> int:
        """Count records matching every filter."""
        raise NotImplementedError("Collection must implement count_where()")

    async def sum_where(self, field: str, *filters: Filter) -> float:
        """Sum a numeric field over matching records (missing values count as 0)."""
        raise NotImplementedError("Collection must implement sum_where()")


@dataclass
class FleetStore:
    """The collections the real-time layer needs."""

    vehicles: Collection
    emergencies: Collection
    services: Collection
