"""
Record Store

Storage collaborator for the learning loop. Exposes get/select, insert,
update, delete and upsert-by-conflict-key over named tables.

SupabaseRecordStore runs against Supabase; InMemoryRecordStore is the
in-process fallback used when no Supabase client is configured.
"""

import copy
import itertools
import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from adaptive_sat_tutor.errors import StorageError

logger = logging.getLogger(__name__)

Row = Dict[str, Any]


class RecordStore(ABC):
    """Interface shared by the Supabase and in-memory stores."""

    @abstractmethod
    async def select(
        self,
        table: str,
        eq: Optional[Dict[str, Any]] = None,
        is_null: Iterable[str] = (),
        lt: Optional[Dict[str, Any]] = None,
        in_: Optional[Dict[str, Sequence[Any]]] = None,
        order_by: Optional[str] = None,
        columns: str = "*",
    ) -> List[Row]:
        ...

    async def select_one(self, table: str, eq: Dict[str, Any]) -> Optional[Row]:
        rows = await self.select(table, eq=eq)
        return rows[0] if rows else None

    async def count(self, table: str, eq: Dict[str, Any]) -> int:
        return len(await self.select(table, eq=eq, columns="id"))

    @abstractmethod
    async def insert(self, table: str, rows: Union[Row, List[Row]]) -> List[Row]:
        ...

    @abstractmethod
    async def update(
        self,
        table: str,
        values: Row,
        eq: Dict[str, Any],
        is_null: Iterable[str] = (),
    ) -> List[Row]:
        ...

    @abstractmethod
    async def delete(self, table: str, eq: Dict[str, Any]) -> None:
        ...

    @abstractmethod
    async def upsert(self, table: str, rows: Union[Row, List[Row]], on_conflict: str) -> List[Row]:
        ...


class SupabaseRecordStore(RecordStore):
    """Record store backed by a supabase-py client."""

    def __init__(self, supabase_client):
        """
        Args:
            supabase_client: Supabase client instance
        """
        self.supabase = supabase_client

    def _execute(self, query, table: str, operation: str):
        try:
            result = query.execute()
        except Exception as e:
            logger.error(f"❌ [RecordStore] {operation} on '{table}' failed: {e}")
            raise StorageError(f"{operation} on {table} failed: {e}") from e
        return result.data or []

    async def select(self, table, eq=None, is_null=(), lt=None, in_=None, order_by=None, columns="*"):
        query = self.supabase.table(table).select(columns)
        for key, value in (eq or {}).items():
            query = query.eq(key, value)
        for key in is_null:
            query = query.is_(key, "null")
        for key, value in (lt or {}).items():
            query = query.lt(key, value)
        for key, values in (in_ or {}).items():
            query = query.in_(key, list(values))
        if order_by:
            query = query.order(order_by, desc=False)
        return self._execute(query, table, "select")

    async def count(self, table, eq):
        query = self.supabase.table(table).select("id", count="exact")
        for key, value in eq.items():
            query = query.eq(key, value)
        try:
            result = query.execute()
        except Exception as e:
            raise StorageError(f"count on {table} failed: {e}") from e
        return result.count or 0

    async def insert(self, table, rows):
        return self._execute(self.supabase.table(table).insert(rows), table, "insert")

    async def update(self, table, values, eq, is_null=()):
        query = self.supabase.table(table).update(values)
        for key, value in eq.items():
            query = query.eq(key, value)
        for key in is_null:
            query = query.is_(key, "null")
        return self._execute(query, table, "update")

    async def delete(self, table, eq):
        query = self.supabase.table(table).delete()
        for key, value in eq.items():
            query = query.eq(key, value)
        self._execute(query, table, "delete")

    async def upsert(self, table, rows, on_conflict):
        query = self.supabase.table(table).upsert(rows, on_conflict=on_conflict)
        return self._execute(query, table, "upsert")


class InMemoryRecordStore(RecordStore):
    """
    Dict-of-lists store with the same filter semantics as Supabase.

    Rows get a uuid4 `id` and an ordered `created_at` on insert.
    """

    def __init__(self, tables: Optional[Dict[str, List[Row]]] = None):
        self.tables: Dict[str, List[Row]] = {}
        self._seq = itertools.count()
        for table, rows in (tables or {}).items():
            for row in rows:
                self._store(table, row)

    def _store(self, table: str, row: Row) -> Row:
        stored = copy.deepcopy(row)
        stored.setdefault("id", str(uuid.uuid4()))
        stored.setdefault("created_at", datetime.now().isoformat())
        stored["_seq"] = next(self._seq)
        self.tables.setdefault(table, []).append(stored)
        return stored

    @staticmethod
    def _public(row: Row) -> Row:
        return {k: copy.deepcopy(v) for k, v in row.items() if k != "_seq"}

    @staticmethod
    def _matches(row, eq=None, is_null=(), lt=None, in_=None) -> bool:
        for key, value in (eq or {}).items():
            if row.get(key) != value:
                return False
        for key in is_null:
            if row.get(key) is not None:
                return False
        for key, value in (lt or {}).items():
            if row.get(key) is None or not row[key] < value:
                return False
        for key, values in (in_ or {}).items():
            if row.get(key) not in values:
                return False
        return True

    async def select(self, table, eq=None, is_null=(), lt=None, in_=None, order_by=None, columns="*"):
        rows = [r for r in self.tables.get(table, []) if self._matches(r, eq, is_null, lt, in_)]
        rows.sort(key=lambda r: r["_seq"])
        if order_by:
            rows.sort(key=lambda r: r.get(order_by))
        return [self._public(r) for r in rows]

    async def insert(self, table, rows):
        batch = rows if isinstance(rows, list) else [rows]
        return [self._public(self._store(table, row)) for row in batch]

    async def update(self, table, values, eq, is_null=()):
        updated = []
        for row in self.tables.get(table, []):
            if self._matches(row, eq, is_null):
                row.update(copy.deepcopy(values))
                updated.append(self._public(row))
        return updated

    async def delete(self, table, eq):
        self.tables[table] = [r for r in self.tables.get(table, []) if not self._matches(r, eq)]

    async def upsert(self, table, rows, on_conflict):
        keys = [k.strip() for k in on_conflict.split(",")]
        batch = rows if isinstance(rows, list) else [rows]
        result = []
        for row in batch:
            existing = next(
                (r for r in self.tables.get(table, []) if all(r.get(k) == row.get(k) for k in keys)),
                None,
            )
            if existing is not None:
                existing.update(copy.deepcopy(row))
                result.append(self._public(existing))
            else:
                result.append(self._public(self._store(table, row)))
        return result
