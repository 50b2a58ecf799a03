"""
SQLAlchemy store backend.

Each operation opens its own AsyncSession from the supplied factory, so a
record is always re-read after a write and returned fully loaded (server
defaults and the selectin ``vehicle`` relationship included).
"""

import logging
from typing import Any, Dict, Optional, Sequence, Type

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from common.errors import StoreFailureError
from libs.store import Collection, Filter, FleetStore
from models.base import RecordMixin
from models.emergency import Emergency
from models.service import Service
from models.vehicle import Vehicle

logger = logging.getLogger(__name__)


def filter_clause(model: Type[RecordMixin], f: Filter):
    """Translate a store Filter into a SQLAlchemy boolean clause."""
    column = getattr(model, f.field, None)
    if column is None:
        raise ValueError(f"{model.__name__} has no column '{f.field}'")
    if f.op == "eq":
        return column.is_(None) if f.value is None else column == f.value
    if f.op == "in":
        return column.in_(list(f.value))
    if f.op == "lt":
        return column < f.value
    if f.op == "gte":
        return column >= f.value
    if f.op == "lte":
        return column <= f.value
    raise ValueError(f"Unsupported filter op: {f.op}")


class SQLCollection(Collection):
    """Collection backed by one ORM model."""

    def __init__(
        self,
        model: Type[RecordMixin],
        session_factory: async_sessionmaker[AsyncSession],
        name: Optional[str] = None,
    ):
        self.model = model
        self.name = name or model.__tablename__
        self._session_factory = session_factory

    def _serialize(self, row, populate: Sequence[str]) -> Dict[str, Any]:
        record = row.to_dict()
        for ref in populate:
            related = getattr(row, ref)
            record[ref] = related.to_dict() if related is not None else None
        return record

    def _where(self, stmt, filters: Sequence[Filter]):
        for f in filters:
            stmt = stmt.where(filter_clause(self.model, f))
        return stmt

    async def find_by_id(self, record_id, populate=()):
        try:
            async with self._session_factory() as session:
                row = await session.get(self.model, record_id)
                return self._serialize(row, populate) if row is not None else None
        except SQLAlchemyError as e:
            logger.error(f"Store find_by_id failed for {self.name} {record_id}: {e}")
            raise StoreFailureError(f"Failed to read {self.name}") from e

    async def insert(self, data):
        row = self.model()
        row.apply(data)
        try:
            async with self._session_factory() as session:
                session.add(row)
                await session.commit()
                record_id = row.id
        except SQLAlchemyError as e:
            logger.error(f"Store insert failed for {self.name}: {e}")
            raise StoreFailureError(f"Failed to create {self.name}") from e
        return await self.find_by_id(record_id)

    async def update_by_id(self, record_id, patch, populate=()):
        try:
            async with self._session_factory() as session:
                row = await session.get(self.model, record_id)
                if row is None:
                    return None
                row.apply(patch)
                await session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Store update failed for {self.name} {record_id}: {e}")
            raise StoreFailureError(f"Failed to update {self.name}") from e
        return await self.find_by_id(record_id, populate)

    async def query(self, *filters, order_by=None, descending=False, populate=()):
        stmt = self._where(select(self.model), filters)
        if order_by:
            column = getattr(self.model, order_by)
            stmt = stmt.order_by(column.desc().nulls_last() if descending else column.asc().nulls_last())
        try:
            async with self._session_factory() as session:
                rows = (await session.execute(stmt)).scalars().all()
                return [self._serialize(row, populate) for row in rows]
        except SQLAlchemyError as e:
            logger.error(f"Store query failed for {self.name}: {e}")
            raise StoreFailureError(f"Failed to query {self.name}") from e

    async def count_where(self, *filters):
        stmt = self._where(select(func.count()).select_from(self.model), filters)
        try:
            async with self._session_factory() as session:
                return int((await session.execute(stmt)).scalar_one())
        except SQLAlchemyError as e:
            logger.error(f"Store count failed for {self.name}: {e}")
            raise StoreFailureError(f"Failed to count {self.name}") from e

    async def sum_where(self, field, *filters):
        column = getattr(self.model, field)
        stmt = self._where(select(func.coalesce(func.sum(column), 0)), filters)
        try:
            async with self._session_factory() as session:
                return float((await session.execute(stmt)).scalar_one())
        except SQLAlchemyError as e:
            logger.error(f"Store sum failed for {self.name}.{field}: {e}")
            raise StoreFailureError(f"Failed to aggregate {self.name}") from e


def create_sql_store(session_factory: async_sessionmaker[AsyncSession]) -> FleetStore:
    """Build a FleetStore over the vehicle, emergency and service tables."""
    return FleetStore(
        vehicles=SQLCollection(Vehicle, session_factory),
        emergencies=SQLCollection(Emergency, session_factory),
        services=SQLCollection(Service, session_factory),
    )
