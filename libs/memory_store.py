"""
In-memory store backend.

Keeps records in plain dictionaries. Used by the test-suite and for local
development without a database (``STORE_BACKEND=memory``); data is lost on
restart.
"""

import copy
import logging
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, List, Sequence, Tuple

from common.clock import utcnow
from libs.store import Collection, Filter, FleetStore

logger = logging.getLogger(__name__)


class MemoryCollection(Collection):
    """Dictionary-backed collection with optional reference population."""

    def __init__(self, name: str, clock: Callable[[], datetime] = utcnow):
        self.name = name
        self._clock = clock
        self._records: Dict[str, Dict[str, Any]] = {}
        # populate name -> (foreign key field, referenced collection)
        self._references: Dict[str, Tuple[str, "MemoryCollection"]] = {}

    def add_reference(self, name: str, field: str, target: "MemoryCollection") -> None:
        self._references[name] = (field, target)

    def _populated(self, record: Dict[str, Any], populate: Sequence[str]) -> Dict[str, Any]:
        result = copy.deepcopy(record)
        for ref in populate:
            if ref not in self._references:
                raise ValueError(f"{self.name} has no reference named '{ref}'")
            field, target = self._references[ref]
            ref_id = record.get(field)
            ref_record = target._records.get(ref_id) if ref_id is not None else None
            result[ref] = copy.deepcopy(ref_record)
        return result

    def _matching(self, filters: Sequence[Filter]) -> List[Dict[str, Any]]:
        return [
            record
            for record in self._records.values()
            if all(f.matches(record) for f in filters)
        ]

    async def find_by_id(self, record_id, populate=()):
        record = self._records.get(record_id)
        if record is None:
            return None
        return self._populated(record, populate)

    async def insert(self, data):
        now = self._clock()
        record = copy.deepcopy(dict(data))
        record["id"] = record.get("id") or uuid.uuid4().hex
        record.setdefault("created_at", now)
        record["updated_at"] = now
        self._records[record["id"]] = record
        logger.debug(f"Inserted {self.name} {record['id']}")
        return copy.deepcopy(record)

    async def update_by_id(self, record_id, patch, populate=()):
        record = self._records.get(record_id)
        if record is None:
            return None
        record.update(copy.deepcopy(dict(patch)))
        record["updated_at"] = self._clock()
        return self._populated(record, populate)

    async def query(self, *filters, order_by=None, descending=False, populate=()):
        records = self._matching(filters)
        if order_by:
            # None sorts last regardless of direction
            present = [r for r in records if r.get(order_by) is not None]
            missing = [r for r in records if r.get(order_by) is None]
            present.sort(key=lambda r: r[order_by], reverse=descending)
            records = present + missing
        return [self._populated(r, populate) for r in records]

    async def count_where(self, *filters):
        return len(self._matching(filters))

    async def sum_where(self, field, *filters):
        return float(sum(r.get(field) or 0 for r in self._matching(filters)))

    def clear(self) -> None:
        self._records.clear()


def create_memory_store(clock: Callable[[], datetime] = utcnow) -> FleetStore:
    """Build a FleetStore whose emergencies and services populate ``vehicle``."""
    vehicles = MemoryCollection("vehicle", clock)
    emergencies = MemoryCollection("emergency", clock)
    services = MemoryCollection("service", clock)
    emergencies.add_reference("vehicle", "vehicle_id", vehicles)
    services.add_reference("vehicle", "vehicle_id", vehicles)
    return FleetStore(vehicles=vehicles, emergencies=emergencies, services=services)
