# category_tree/database/postgres_store.py
import logging
from contextlib import asynccontextmanager
from contextvars import ContextVar
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple
import asyncpg
from .database import Database
from .store import (
    ARRAY_FIELDS, ASCENDING, COUNTER_FIELDS, CategoryStore, Filter, Sort,
    check_field, merge_changes, validate_filter, validate_sort
)
from ..exceptions import CategoryValidationError
from ..models.category import Category

logger = logging.getLogger(__name__)

# connection pinned by an open transaction in the current task
_transaction_connection: ContextVar[Optional[asyncpg.Connection]] = ContextVar(
    "category_transaction_connection", default=None
)

# sorted byte-wise so results match Python string ordering
TEXT_SORT_FIELDS = frozenset({"id", "name", "slug", "description", "parent_id", "path"})


def quote(field: str) -> str:
    return f'"{check_field(field)}"'


def escape_like(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def compile_filter(filter: Filter, args: List[Any]) -> str:
    """Translate a store filter into a SQL boolean expression.

    Parameters are appended to ``args`` and referenced as ``$n``.
    """
    clauses = []
    for key, condition in filter.items():
        if key == "$or":
            parts = [compile_filter(sub, args) for sub in condition]
            clauses.append("(" + " OR ".join(parts) + ")" if parts else "FALSE")
            continue

        column = quote(key)
        if isinstance(condition, dict):
            for op, operand in condition.items():
                if op == "$in":
                    args.append(list(operand))
                    if key in ARRAY_FIELDS:
                        clauses.append(f"{column} && ${len(args)}")
                    else:
                        clauses.append(f"{column} = ANY(${len(args)})")
                else:
                    args.append(f"%{escape_like(str(operand))}%")
                    clauses.append(f"{column} ILIKE ${len(args)}")
        elif condition is None:
            clauses.append(f"{column} IS NULL")
        elif key in ARRAY_FIELDS and not isinstance(condition, (list, tuple)):
            args.append(condition)
            clauses.append(f"${len(args)} = ANY({column})")
        else:
            args.append(list(condition) if isinstance(condition, tuple) else condition)
            clauses.append(f"{column} = ${len(args)}")

    return " AND ".join(clauses) if clauses else "TRUE"


def compile_sort(sort: Optional[Sort]) -> str:
    order = validate_sort(sort)
    if not order:
        return ""
    terms = []
    for field, direction in order:
        column = quote(field)
        if field in TEXT_SORT_FIELDS:
            column += ' COLLATE "C"'
        terms.append(f"{column} {'ASC' if direction == ASCENDING else 'DESC'}")
    return " ORDER BY " + ", ".join(terms)


def build_select(filter: Filter, sort: Optional[Sort] = None) -> Tuple[str, List[Any]]:
    validate_filter(filter)
    args: List[Any] = []
    where = compile_filter(filter, args)
    return f"SELECT * FROM categories WHERE {where}{compile_sort(sort)}", args


class PostgresCategoryStore(CategoryStore):
    """Category records in PostgreSQL; ancestors is a TEXT[] column"""

    def __init__(self, db: Database):
        self.db = db

    @asynccontextmanager
    async def _connection(self) -> AsyncIterator[asyncpg.Connection]:
        conn = _transaction_connection.get()
        if conn is not None:
            yield conn
            return
        async with self.db.pool.acquire() as conn:
            yield conn

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        conn = _transaction_connection.get()
        if conn is not None:
            # nested: savepoint on the pinned connection
            async with conn.transaction():
                yield
            return

        async with self.db.pool.acquire() as conn:
            async with conn.transaction():
                token = _transaction_connection.set(conn)
                try:
                    yield
                finally:
                    _transaction_connection.reset(token)

    async def find_by_id(self, category_id: str) -> Optional[Category]:
        async with self._connection() as conn:
            row = await conn.fetchrow("SELECT * FROM categories WHERE id = $1", category_id)
            return Category(**dict(row)) if row else None

    async def find(self, filter: Filter, sort: Optional[Sort] = None) -> List[Category]:
        query, args = build_select(filter, sort)
        async with self._connection() as conn:
            rows = await conn.fetch(query, *args)
            return [Category(**dict(row)) for row in rows]

    async def insert(self, category: Category) -> Category:
        data = category.model_dump()
        columns = ", ".join(quote(field) for field in data)
        placeholders = ", ".join(f"${i}" for i in range(1, len(data) + 1))

        async with self._connection() as conn:
            try:
                row = await conn.fetchrow(
                    f"INSERT INTO categories ({columns}) VALUES ({placeholders}) RETURNING *",
                    *data.values()
                )
            except asyncpg.UniqueViolationError as e:
                raise CategoryValidationError(f"Category '{category.name}' already exists") from e
            return Category(**dict(row))

    async def update_by_id(self, category_id: str, changes: Dict[str, Any]) -> Optional[Category]:
        async with self._connection() as conn:
            row = await conn.fetchrow(
                "SELECT * FROM categories WHERE id = $1 FOR UPDATE", category_id
            )
            if row is None:
                return None

            updated = merge_changes(dict(row), changes)
            data = updated.model_dump(exclude={"id", "created_at"})
            assignments = ", ".join(
                f"{quote(field)} = ${i}" for i, field in enumerate(data, start=1)
            )
            try:
                row = await conn.fetchrow(
                    f"UPDATE categories SET {assignments} WHERE id = ${len(data) + 1} RETURNING *",
                    *data.values(), category_id
                )
            except asyncpg.UniqueViolationError as e:
                raise CategoryValidationError(f"Category '{updated.name}' already exists") from e
            return Category(**dict(row)) if row else None

    async def delete_by_id(self, category_id: str) -> bool:
        async with self._connection() as conn:
            result = await conn.execute("DELETE FROM categories WHERE id = $1", category_id)
            return result == "DELETE 1"

    async def increment_field(self, category_id: str, field: str, delta: int) -> None:
        if field not in COUNTER_FIELDS:
            raise ValueError(f"Field {field} is not a counter")
        column = quote(field)
        async with self._connection() as conn:
            result = await conn.execute(
                f"UPDATE categories SET {column} = {column} + $1, updated_at = NOW() WHERE id = $2",
                delta, category_id
            )
            if result != "UPDATE 1":
                logger.warning(f"Counter {field} not updated, category {category_id} is missing")
