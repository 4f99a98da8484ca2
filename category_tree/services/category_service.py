# category_tree/services/category_service.py
import asyncio
import logging
from collections import Counter, deque
from typing import Any, Dict, List, Optional
from pydantic import ValidationError
from ..database.store import ASCENDING, CategoryStore
from ..exceptions import (
    CategoryNotFoundError, CategoryValidationError, CyclicMoveError, InconsistentStateError
)
from ..models.category import Category, CategoryNode, CategoryWithPath
from ..utils.formatters import format_full_path
from ..utils.tree import build_tree

SIBLING_SORT = [("order", ASCENDING), ("name", ASCENDING)]
DESCENDANT_SORT = [("level", ASCENDING), ("order", ASCENDING), ("name", ASCENDING)]

# fields a caller may change through update_category
EDITABLE_FIELDS = frozenset({"name", "description", "is_active", "order"})

class CategoryService:
    """Category hierarchy: ancestors, level and children_count bookkeeping"""

    def __init__(self, store: CategoryStore):
        self.store = store
        self.logger = logging.getLogger(__name__)
        # structural mutations are serialized per forest
        self._lock = asyncio.Lock()

    # ---- validation helpers ----

    @staticmethod
    def _clean_name(name: Optional[str]) -> str:
        if name is None or not str(name).strip():
            raise CategoryValidationError("Name is required")
        return str(name).strip()

    async def _ensure_unique_name(self, name: str, exclude_id: Optional[str] = None):
        lowered = name.lower()
        matches = await self.store.find({"name": {"$icontains": name}})
        for category in matches:
            if category.name.lower() == lowered and category.id != exclude_id:
                raise CategoryValidationError(f"Category '{name}' already exists")

    async def _require(self, category_id: str) -> Category:
        category = await self.store.find_by_id(category_id)
        if category is None:
            raise CategoryNotFoundError(category_id)
        return category

    # ---- create / update ----

    async def create_category(
        self,
        name: str,
        parent_id: Optional[str] = None,
        description: Optional[str] = None,
        is_active: bool = True,
        order: int = 0,
    ) -> Category:
        """Create a category, optionally under an existing parent"""
        name = self._clean_name(name)

        async with self._lock:
            async with self.store.transaction():
                await self._ensure_unique_name(name)

                ancestors: List[str] = []
                level = 0
                if parent_id is not None:
                    parent = await self.store.find_by_id(parent_id)
                    if parent is None:
                        raise CategoryNotFoundError(parent_id, f"Parent category not found: {parent_id}")
                    ancestors = [*parent.ancestors, parent.id]
                    level = parent.level + 1

                try:
                    category = Category(
                        name=name,
                        description=description,
                        parent_id=parent_id,
                        ancestors=ancestors,
                        level=level,
                        is_active=is_active,
                        order=order,
                    )
                except ValidationError as e:
                    raise CategoryValidationError(str(e)) from e

                category = await self.store.insert(category)
                if parent_id is not None:
                    await self.store.increment_field(parent_id, "children_count", 1)

        self.logger.info(f"Category {category.id} '{category.name}' created at level {category.level}")
        return category

    async def get_category(self, category_id: str) -> Category:
        return await self._require(category_id)

    async def update_category(self, category_id: str, changes: Dict[str, Any]) -> Category:
        """Update caller-owned fields; a new name also gets a new slug"""
        disallowed = set(changes) - EDITABLE_FIELDS
        if disallowed:
            raise CategoryValidationError(
                f"Fields cannot be updated directly: {', '.join(sorted(disallowed))}"
            )
        if not changes:
            return await self._require(category_id)

        changes = dict(changes)
        if "name" in changes:
            changes["name"] = self._clean_name(changes["name"])
        if "order" in changes and (not isinstance(changes["order"], int) or changes["order"] < 0):
            raise CategoryValidationError("Order must be a non-negative integer")

        # renames share the lock with create so the uniqueness check holds
        async with self._lock:
            async with self.store.transaction():
                if "name" in changes:
                    await self._ensure_unique_name(changes["name"], exclude_id=category_id)
                try:
                    category = await self.store.update_by_id(category_id, changes)
                except ValidationError as e:
                    raise CategoryValidationError(str(e)) from e
                if category is None:
                    raise CategoryNotFoundError(category_id)

        self.logger.info(f"Category {category_id} updated: {', '.join(sorted(changes))}")
        return category

    async def activate_category(self, category_id: str) -> Category:
        return await self.update_category(category_id, {"is_active": True})

    async def deactivate_category(self, category_id: str) -> Category:
        return await self.update_category(category_id, {"is_active": False})

    # ---- reads ----

    async def get_category_tree(self) -> List[CategoryNode]:
        """All active categories as a forest, siblings sorted by (order, name)"""
        categories = await self.store.find({"is_active": True})
        return build_tree(categories)

    async def get_categories_by_level(self, level: int) -> List[Category]:
        return await self.store.find({"level": level, "is_active": True}, SIBLING_SORT)

    async def get_children(self, category_id: str) -> List[Category]:
        return await self.store.find({"parent_id": category_id, "is_active": True}, SIBLING_SORT)

    async def get_ancestors(self, category_id: str) -> List[Category]:
        """Ancestors of a category, root first"""
        category = await self._require(category_id)
        if not category.ancestors:
            return []
        return await self.store.find(
            {"id": {"$in": category.ancestors}}, [("level", ASCENDING)]
        )

    async def get_descendants(self, category_id: str) -> List[Category]:
        return await self.store.find({"ancestors": category_id, "is_active": True}, DESCENDANT_SORT)

    async def get_category_with_path(self, category_id: str) -> CategoryWithPath:
        category = await self._require(category_id)

        names = {}
        if category.ancestors:
            found = await self.store.find({"id": {"$in": category.ancestors}})
            names = {ancestor.id: ancestor.name for ancestor in found}

        missing = [ancestor_id for ancestor_id in category.ancestors if ancestor_id not in names]
        if missing:
            raise InconsistentStateError(
                [f"{category.id}: ancestor {ancestor_id} does not exist" for ancestor_id in missing]
            )

        full_path = format_full_path([*(names[a] for a in category.ancestors), category.name])
        return CategoryWithPath(**category.model_dump(), full_path=full_path)

    async def search_categories(self, query: str) -> List[Category]:
        """Case-insensitive substring search over name and description"""
        if query is None or not query.strip():
            raise CategoryValidationError("Search query is required")
        query = query.strip()
        return await self.store.find(
            {
                "$or": [
                    {"name": {"$icontains": query}},
                    {"description": {"$icontains": query}},
                ],
                "is_active": True,
            },
            [("name", ASCENDING)],
        )

    # ---- structural mutations ----

    async def _rebuild_descendants(self, root: Category) -> int:
        """Re-derive ancestors and level below ``root`` breadth-first.

        Children are found through parent_id, so stale ancestors anywhere
        in the subtree are repaired. Returns the number of records written.
        """
        queue = deque([root])
        seen = {root.id}
        updated = 0

        while queue:
            parent = queue.popleft()
            children = await self.store.find({"parent_id": parent.id})
            for child in children:
                if child.id in seen:
                    raise InconsistentStateError([f"{child.id}: reached twice below {root.id}"])
                seen.add(child.id)

                child = await self.store.update_by_id(child.id, {
                    "ancestors": [*parent.ancestors, parent.id],
                    "level": parent.level + 1,
                })
                updated += 1
                queue.append(child)

        self.logger.debug(f"Re-derived {updated} descendant(s) of {root.id}")
        return updated

    async def move_category(self, category_id: str, new_parent_id: Optional[str]) -> Category:
        """Reparent a category (None makes it a root) and fix its whole subtree"""
        async with self._lock:
            async with self.store.transaction():
                category = await self._require(category_id)

                ancestors: List[str] = []
                level = 0
                if new_parent_id is not None:
                    if new_parent_id == category_id:
                        raise CyclicMoveError(category_id, new_parent_id)
                    new_parent = await self.store.find_by_id(new_parent_id)
                    if new_parent is None:
                        raise CategoryNotFoundError(
                            new_parent_id, f"New parent category not found: {new_parent_id}"
                        )
                    if category_id in new_parent.ancestors:
                        raise CyclicMoveError(category_id, new_parent_id)
                    ancestors = [*new_parent.ancestors, new_parent.id]
                    level = new_parent.level + 1

                old_parent_id = category.parent_id
                if old_parent_id is not None:
                    await self.store.increment_field(old_parent_id, "children_count", -1)

                category = await self.store.update_by_id(category_id, {
                    "parent_id": new_parent_id,
                    "ancestors": ancestors,
                    "level": level,
                })

                if new_parent_id is not None:
                    await self.store.increment_field(new_parent_id, "children_count", 1)

                fixed = await self._rebuild_descendants(category)

        self.logger.info(
            f"Category {category_id} moved from {old_parent_id or 'root'} "
            f"to {new_parent_id or 'root'}, {fixed} descendant(s) updated"
        )
        return category

    async def delete_category(self, category_id: str) -> bool:
        """Delete a category; its children move up to its parent"""
        async with self._lock:
            async with self.store.transaction():
                category = await self._require(category_id)

                children = await self.store.find({"parent_id": category_id})
                fixed = 0
                for child in children:
                    child = await self.store.update_by_id(child.id, {
                        "parent_id": category.parent_id,
                        "ancestors": category.ancestors,
                        "level": category.level,
                    })
                    fixed += await self._rebuild_descendants(child)

                if category.parent_id is not None:
                    delta = len(children) - 1
                    if delta:
                        await self.store.increment_field(category.parent_id, "children_count", delta)

                deleted = await self.store.delete_by_id(category_id)

        self.logger.info(
            f"Category {category_id} deleted, {len(children)} child(ren) moved to "
            f"{category.parent_id or 'root'}, {fixed} deeper descendant(s) updated"
        )
        return deleted

    async def update_product_count(self, category_id: str, increment: int = 1) -> Category:
        """Adjust product_count; called by the product catalog"""
        await self._require(category_id)
        await self.store.increment_field(category_id, "product_count", increment)
        return await self._require(category_id)

    # ---- consistency ----

    async def check_consistency(self) -> int:
        """Verify the tree invariants over every record, active or not"""
        categories = {c.id: c for c in await self.store.find({})}
        child_counts = Counter(c.parent_id for c in categories.values() if c.parent_id)
        problems = []

        for category in categories.values():
            if category.level != len(category.ancestors):
                problems.append(
                    f"{category.id}: level {category.level} != {len(category.ancestors)} ancestors"
                )
            if category.parent_id is None:
                if category.ancestors:
                    problems.append(f"{category.id}: root with ancestors")
            else:
                parent = categories.get(category.parent_id)
                if parent is None:
                    problems.append(f"{category.id}: parent {category.parent_id} does not exist")
                elif category.ancestors != [*parent.ancestors, parent.id]:
                    problems.append(f"{category.id}: ancestors do not extend parent's")
            for ancestor_id in category.ancestors:
                if ancestor_id not in categories:
                    problems.append(f"{category.id}: ancestor {ancestor_id} does not exist")
                elif ancestor_id == category.id:
                    problems.append(f"{category.id}: is its own ancestor")
            if category.children_count != child_counts[category.id]:
                problems.append(
                    f"{category.id}: children_count {category.children_count} "
                    f"!= {child_counts[category.id]} children"
                )

        if problems:
            raise InconsistentStateError(problems)
        return len(categories)

    async def rebuild_tree(self) -> int:
        """Recompute ancestors, level and children_count for the whole forest"""
        async with self._lock:
            async with self.store.transaction():
                categories = await self.store.find({})
                child_counts = Counter(c.parent_id for c in categories if c.parent_id)
                rewritten = 0

                for category in categories:
                    if category.children_count != child_counts[category.id]:
                        await self.store.update_by_id(
                            category.id, {"children_count": child_counts[category.id]}
                        )
                        rewritten += 1

                for root in await self.store.find({"parent_id": None}):
                    if root.ancestors or root.level:
                        root = await self.store.update_by_id(root.id, {"ancestors": [], "level": 0})
                        rewritten += 1
                    rewritten += await self._rebuild_descendants(root)

        self.logger.info(f"Category tree rebuilt, {rewritten} record write(s)")
        return rewritten
