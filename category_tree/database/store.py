# category_tree/database/store.py
"""Document-store collaborator used by the category tree manager.

Filters are plain dicts in document-store style:

* ``{"field": value}``: equality, ``None`` matches a missing value. On the
  array field ``ancestors`` a scalar means membership.
* ``{"field": {"$in": [...]}}``: the field value is one of the given values
  (for ``ancestors``: shares at least one element).
* ``{"field": {"$icontains": "text"}}``: case-insensitive substring.
* ``{"$or": [filter, ...]}``: any of the sub-filters matches.

Top-level keys are combined with AND. Sorts are sequences of
``(field, ASCENDING | DESCENDING)``.
"""
import copy
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Tuple
from ..models.base import utcnow
from ..models.category import Category

ASCENDING = 1
DESCENDING = -1

Filter = Dict[str, Any]
Sort = Sequence[Tuple[str, int]]

CATEGORY_FIELDS = frozenset(Category.model_fields)
ARRAY_FIELDS = frozenset({"ancestors"})
COUNTER_FIELDS = frozenset({"children_count", "product_count"})
IMMUTABLE_FIELDS = frozenset({"id", "created_at"})
OPERATORS = frozenset({"$in", "$icontains"})


def check_field(field: str) -> str:
    if field not in CATEGORY_FIELDS:
        raise ValueError(f"Unknown category field: {field}")
    return field


def validate_filter(filter: Filter) -> None:
    for key, condition in filter.items():
        if key == "$or":
            if not isinstance(condition, (list, tuple)):
                raise ValueError("$or expects a list of filters")
            for sub in condition:
                validate_filter(sub)
            continue
        check_field(key)
        if isinstance(condition, dict):
            unknown = set(condition) - OPERATORS
            if unknown:
                raise ValueError(f"Unknown filter operator(s): {', '.join(sorted(unknown))}")


def validate_sort(sort: Optional[Sort]) -> List[Tuple[str, int]]:
    result = []
    for field, direction in sort or ():
        check_field(field)
        if direction not in (ASCENDING, DESCENDING):
            raise ValueError(f"Invalid sort direction for {field}: {direction}")
        result.append((field, direction))
    return result


def merge_changes(current: Dict[str, Any], changes: Dict[str, Any]) -> Category:
    """Apply a partial update to a stored record and re-derive computed fields"""
    for field in changes:
        check_field(field)
        if field in IMMUTABLE_FIELDS:
            raise ValueError(f"Field {field} cannot be updated")
    return Category(**{**current, **changes, "updated_at": utcnow()})


def matches(record: Dict[str, Any], filter: Filter) -> bool:
    for key, condition in filter.items():
        if key == "$or":
            if not any(matches(record, sub) for sub in condition):
                return False
            continue

        value = record.get(key)
        if isinstance(condition, dict):
            for op, operand in condition.items():
                if op == "$in":
                    if key in ARRAY_FIELDS:
                        ok = any(item in operand for item in value or ())
                    else:
                        ok = value in operand
                else:
                    ok = value is not None and str(operand).lower() in str(value).lower()
                if not ok:
                    return False
        elif key in ARRAY_FIELDS and not isinstance(condition, (list, tuple)):
            if condition not in (value or ()):
                return False
        elif isinstance(condition, tuple):
            if value != list(condition):
                return False
        elif value != condition:
            return False
    return True


def _sort_value(value):
    # missing values sort last, as in PostgreSQL
    return value is None, value


class CategoryStore(ABC):
    """Async persistence interface for category records"""

    @abstractmethod
    async def find_by_id(self, category_id: str) -> Optional[Category]:
        ...

    @abstractmethod
    async def find(self, filter: Filter, sort: Optional[Sort] = None) -> List[Category]:
        ...

    @abstractmethod
    async def insert(self, category: Category) -> Category:
        ...

    @abstractmethod
    async def update_by_id(self, category_id: str, changes: Dict[str, Any]) -> Optional[Category]:
        ...

    @abstractmethod
    async def delete_by_id(self, category_id: str) -> bool:
        ...

    @abstractmethod
    async def increment_field(self, category_id: str, field: str, delta: int) -> None:
        ...

    @abstractmethod
    def transaction(self):
        """Async context manager; store calls made inside commit or roll back together"""


class MemoryCategoryStore(CategoryStore):
    """In-process store with the same filter and sort semantics as the database store.

    Text fields sort by code point, like ``COLLATE "C"`` in PostgreSQL.
    """

    def __init__(self, categories: Sequence[Category] = ()):
        self._records: Dict[str, Dict[str, Any]] = {
            category.id: category.model_dump() for category in categories
        }

    def __len__(self) -> int:
        return len(self._records)

    async def find_by_id(self, category_id: str) -> Optional[Category]:
        record = self._records.get(category_id)
        return Category(**record) if record else None

    async def find(self, filter: Filter, sort: Optional[Sort] = None) -> List[Category]:
        validate_filter(filter)
        order = validate_sort(sort)
        records = [r for r in self._records.values() if matches(r, filter)]
        for field, direction in reversed(order):
            records.sort(key=lambda r: _sort_value(r[field]), reverse=direction == DESCENDING)
        return [Category(**r) for r in records]

    async def insert(self, category: Category) -> Category:
        if category.id in self._records:
            raise ValueError(f"Duplicate category id: {category.id}")
        self._records[category.id] = category.model_dump()
        return Category(**self._records[category.id])

    async def update_by_id(self, category_id: str, changes: Dict[str, Any]) -> Optional[Category]:
        record = self._records.get(category_id)
        if record is None:
            return None
        updated = merge_changes(record, changes)
        self._records[category_id] = updated.model_dump()
        return updated

    async def delete_by_id(self, category_id: str) -> bool:
        return self._records.pop(category_id, None) is not None

    async def increment_field(self, category_id: str, field: str, delta: int) -> None:
        if field not in COUNTER_FIELDS:
            raise ValueError(f"Field {field} is not a counter")
        record = self._records.get(category_id)
        if record is not None:
            record[field] += delta
            record["updated_at"] = utcnow()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        snapshot = copy.deepcopy(self._records)
        try:
            yield
        except BaseException:
            self._records = snapshot
            raise
