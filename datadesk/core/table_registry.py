# datadesk/core/table_registry.py
from __future__ import annotations
import logging
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Type

from sqlalchemy import column, func, inspect, literal_column, select, table, update
from sqlalchemy.ext.asyncio import AsyncEngine

from datadesk.core.models import DataSource, Row
from datadesk.core.read_only_db_executor import json_safe_row

logger = logging.getLogger(__name__)


class EntitiesTable(str, Enum):
    ENTITY = "entity"
    PEOPLE = "people"
    ADDRESS = "address"
    BANK = "bank"
    BANK_ACCOUNT = "bank_account"
    ASSET = "asset"
    ENTITY_PROPERTY = "entity_property"
    PROPERTY = "property"
    ENTITY_ROLE = "entity_role"
    ROLE = "role"
    ENTITY_MAPPING = "entity_mapping"
    ENTITY_CONTACT = "entity_contact"
    ENTITY_RISK_AND_RATES = "entity_risk_and_rates"
    PARAM_COUNTRY = "param_country"
    PARAM = "param"
    BUY = "buy"


class DmsTable(str, Enum):
    LEADS_TICKETS = "leads_tickets"
    LEADS_NOTES = "leads_notes"
    LEADS_TRANSACTIONS = "leads_transactions"
    USERS = "users"
    GLOBAL_ORGANISATIONS = "global_organisations"
    LEADS_TAGS = "leads_tags"
    REMINDERS = "reminders"
    LEDGERS = "ledgers"


TABLES: Dict[DataSource, Type[Enum]] = {
    DataSource.ENTITIES: EntitiesTable,
    DataSource.DMS: DmsTable,
}


class UnknownTableError(ValueError):
    def __init__(self, source: DataSource, name: str):
        allowed = ", ".join(t.value for t in TABLES[source])
        super().__init__(f"Unknown table '{name}' for {source.value}. Allowed: {allowed}")
        self.source = source
        self.name = name


class TableAccessor:
    """Generic CRUD over one registered table; columns are resolved per call from the row dicts."""

    def __init__(self, engine: AsyncEngine, name: str):
        self.engine = engine
        self.name = name

    @staticmethod
    def _where(where: Optional[Mapping[str, Any]]):
        conds = []
        for k, v in (where or {}).items():
            if isinstance(v, (list, tuple, set, frozenset)):
                conds.append(column(k).in_(list(v)))
            else:
                # None renders as IS NULL
                conds.append(column(k) == v)
        return conds

    async def find_many(self, skip: int = 0, take: int = 10, where: Optional[Mapping[str, Any]] = None) -> List[Row]:
        tbl = table(self.name)
        stmt = select(literal_column("*")).select_from(tbl).offset(max(0, skip)).limit(max(1, take))
        for cond in self._where(where):
            stmt = stmt.where(cond)
        async with self.engine.connect() as conn:
            result = await conn.execute(stmt)
            return [json_safe_row(r) for r in result.mappings().all()]

    async def count(self, where: Optional[Mapping[str, Any]] = None) -> int:
        tbl = table(self.name)
        stmt = select(func.count()).select_from(tbl)
        for cond in self._where(where):
            stmt = stmt.where(cond)
        async with self.engine.connect() as conn:
            return int((await conn.execute(stmt)).scalar_one())

    async def update(self, where: Mapping[str, Any], data: Mapping[str, Any]) -> int:
        if not where:
            raise ValueError("update requires a key condition")
        if not data:
            return 0
        tbl = table(self.name, *(column(k) for k in data))
        stmt = update(tbl).values(**dict(data))
        for cond in self._where(where):
            stmt = stmt.where(cond)
        async with self.engine.begin() as conn:
            result = await conn.execute(stmt)
            logger.debug("update %s where=%s columns=%s rowcount=%s", self.name, dict(where), list(data), result.rowcount)
            return int(result.rowcount or 0)

    def _grouped(self, columns: Sequence[str], where: Optional[Mapping[str, Any]]):
        cols = [column(c) for c in columns]
        stmt = (
            select(*cols, func.count().label("count"))
            .select_from(table(self.name))
            .group_by(*cols)
            .having(func.count() > 1)
        )
        for cond in self._where(where):
            stmt = stmt.where(cond)
        return stmt

    async def duplicate_groups(
        self,
        columns: Sequence[str],
        where: Optional[Mapping[str, Any]] = None,
        skip: int = 0,
        take: int = 50,
    ) -> List[Row]:
        """Value combinations of `columns` shared by more than one row, most repeated first."""
        stmt = (
            self._grouped(columns, where)
            .order_by(literal_column("count").desc(), *(column(c) for c in columns))
            .offset(max(0, skip))
            .limit(max(1, take))
        )
        async with self.engine.connect() as conn:
            result = await conn.execute(stmt)
            return [json_safe_row(r) for r in result.mappings().all()]

    async def duplicate_group_count(self, columns: Sequence[str], where: Optional[Mapping[str, Any]] = None) -> int:
        stmt = select(func.count()).select_from(self._grouped(columns, where).subquery())
        async with self.engine.connect() as conn:
            return int((await conn.execute(stmt)).scalar_one())

    async def primary_key(self) -> Optional[str]:
        """Single-column primary key name, or None for composite / missing keys."""
        def _pk(sync_conn) -> List[str]:
            return inspect(sync_conn).get_pk_constraint(self.name).get("constrained_columns") or []

        async with self.engine.connect() as conn:
            cols = await conn.run_sync(_pk)
        return cols[0] if len(cols) == 1 else None


class TableRegistry:
    """Maps (source, table name) to an accessor, rejecting names outside the fixed sets."""

    def __init__(self, engines: Mapping[DataSource, AsyncEngine]):
        self.engines = dict(engines)

    @staticmethod
    def validate(source: DataSource, name: str) -> str:
        try:
            return TABLES[DataSource(source)](name).value
        except ValueError:
            raise UnknownTableError(DataSource(source), name) from None

    def accessor(self, source: DataSource, name: str) -> TableAccessor:
        valid = self.validate(source, name)
        return TableAccessor(self.engines[DataSource(source)], valid)

    @staticmethod
    def names(source: DataSource) -> List[str]:
        return [t.value for t in TABLES[DataSource(source)]]
