"""Tests for CategoryService against the in-memory store."""

import asyncio
import random

import pytest

from category_tree.exceptions import (
    CategoryNotFoundError,
    CategoryValidationError,
    CyclicMoveError,
    InconsistentStateError,
)


async def reachable_below(store, root_id):
    """Ids reachable from root_id by following parent_id links downwards"""
    everything = await store.find({})
    children_of = {}
    for category in everything:
        children_of.setdefault(category.parent_id, []).append(category.id)
    found, stack = set(), [root_id]
    while stack:
        for child_id in children_of.get(stack.pop(), []):
            found.add(child_id)
            stack.append(child_id)
    return found


class TestCreate:
    async def test_create_root(self, service):
        category = await service.create_category("  Home & Garden ", description="Outdoor")

        assert category.name == "Home & Garden"
        assert category.slug == "home-garden"
        assert category.parent_id is None
        assert category.ancestors == []
        assert category.level == 0
        assert category.path == category.id
        assert category.product_count == 0
        assert category.children_count == 0
        assert category.is_active is True

    async def test_scenario_a_three_levels(self, service, electronics_tree):
        electronics, smartphones, iphone = electronics_tree

        assert electronics.level == 0 and electronics.ancestors == []
        assert smartphones.level == 1 and smartphones.ancestors == [electronics.id]
        assert iphone.level == 2 and iphone.ancestors == [electronics.id, smartphones.id]
        assert iphone.path == f"{electronics.id}/{smartphones.id}/{iphone.id}"

        descendants = await service.get_descendants(electronics.id)
        assert {c.name for c in descendants} == {"Smartphones", "iPhone"}
        assert [c.name for c in descendants] == ["Smartphones", "iPhone"]

        assert (await service.get_category(electronics.id)).children_count == 1
        assert (await service.get_category(smartphones.id)).children_count == 1
        assert await service.check_consistency() == 3

    async def test_missing_parent(self, service, store):
        with pytest.raises(CategoryNotFoundError):
            await service.create_category("Orphan", parent_id="missing")
        assert len(store) == 0

    @pytest.mark.parametrize("name", ["", "   ", None])
    async def test_blank_name(self, service, name):
        with pytest.raises(CategoryValidationError):
            await service.create_category(name)

    async def test_duplicate_name_case_insensitive(self, service, electronics_tree):
        with pytest.raises(CategoryValidationError, match="already exists"):
            await service.create_category("ELECTRONICS")

    async def test_negative_order(self, service):
        with pytest.raises(CategoryValidationError):
            await service.create_category("Books", order=-1)


class TestReads:
    async def test_children_sorted_by_order_then_name(self, service):
        root = await service.create_category("Root")
        await service.create_category("Zeta", parent_id=root.id)
        await service.create_category("Alpha", parent_id=root.id, order=2)
        await service.create_category("Beta", parent_id=root.id)

        children = await service.get_children(root.id)
        assert [c.name for c in children] == ["Beta", "Zeta", "Alpha"]

    async def test_unknown_id_reads(self, service):
        assert await service.get_children("missing") == []
        assert await service.get_descendants("missing") == []
        with pytest.raises(CategoryNotFoundError):
            await service.get_ancestors("missing")
        with pytest.raises(CategoryNotFoundError):
            await service.get_category("missing")

    async def test_ancestors_root_first(self, service, electronics_tree):
        electronics, smartphones, iphone = electronics_tree

        ancestors = await service.get_ancestors(iphone.id)
        assert [c.id for c in ancestors] == [electronics.id, smartphones.id]
        assert await service.get_ancestors(electronics.id) == []

    async def test_categories_by_level(self, service, electronics_tree):
        await service.create_category("Books")
        level_zero = await service.get_categories_by_level(0)
        assert [c.name for c in level_zero] == ["Books", "Electronics"]
        assert [c.name for c in await service.get_categories_by_level(2)] == ["iPhone"]

    async def test_scenario_e_full_path(self, service, electronics_tree):
        _, _, iphone = electronics_tree

        result = await service.get_category_with_path(iphone.id)
        assert result.full_path == "Electronics > Smartphones > iPhone"
        assert result.id == iphone.id

    async def test_full_path_of_root(self, service, electronics_tree):
        electronics, _, _ = electronics_tree
        result = await service.get_category_with_path(electronics.id)
        assert result.full_path == "Electronics"

    async def test_full_path_missing(self, service):
        with pytest.raises(CategoryNotFoundError):
            await service.get_category_with_path("missing")


class TestTree:
    async def test_tree_structure_and_order(self, service, electronics_tree):
        electronics, smartphones, iphone = electronics_tree
        await service.create_category("Laptops", parent_id=electronics.id)
        await service.create_category("Audio", parent_id=electronics.id, order=1)
        await service.create_category("Books")

        tree = await service.get_category_tree()

        assert [root.name for root in tree] == ["Books", "Electronics"]
        assert [c.name for c in tree[1].children] == ["Laptops", "Smartphones", "Audio"]
        phones = tree[1].children[1]
        assert [c.id for c in phones.children] == [iphone.id]
        assert phones.children[0].children == []

    async def test_inactive_subtree_hidden(self, service, electronics_tree):
        electronics, smartphones, _ = electronics_tree
        await service.deactivate_category(smartphones.id)

        tree = await service.get_category_tree()
        assert len(tree) == 1
        assert tree[0].children == []
        assert await service.get_children(electronics.id) == []

        await service.activate_category(smartphones.id)
        tree = await service.get_category_tree()
        assert tree[0].children[0].children[0].name == "iPhone"

    async def test_tree_is_idempotent(self, service, electronics_tree):
        first = await service.get_category_tree()
        second = await service.get_category_tree()
        assert [r.model_dump() for r in first] == [r.model_dump() for r in second]

    async def test_empty_tree(self, service):
        assert await service.get_category_tree() == []


class TestMove:
    async def test_scenario_b_move_to_root(self, service, electronics_tree):
        electronics, smartphones, iphone = electronics_tree

        moved = await service.move_category(smartphones.id, None)

        assert moved.parent_id is None
        assert moved.level == 0
        assert moved.ancestors == []
        iphone = await service.get_category(iphone.id)
        assert iphone.level == 1
        assert iphone.ancestors == [smartphones.id]
        assert (await service.get_category(electronics.id)).children_count == 0
        await service.check_consistency()

    async def test_move_under_new_parent(self, service, electronics_tree):
        electronics, smartphones, iphone = electronics_tree
        gadgets = await service.create_category("Gadgets")

        moved = await service.move_category(smartphones.id, gadgets.id)

        assert moved.ancestors == [gadgets.id]
        iphone = await service.get_category(iphone.id)
        assert iphone.ancestors == [gadgets.id, smartphones.id]
        assert (await service.get_category(gadgets.id)).children_count == 1
        assert (await service.get_category(electronics.id)).children_count == 0
        await service.check_consistency()

    async def test_scenario_d_cyclic_move(self, service, store, electronics_tree):
        electronics, smartphones, iphone = electronics_tree
        before = [c.model_dump() for c in await store.find({})]

        with pytest.raises(CyclicMoveError):
            await service.move_category(electronics.id, smartphones.id)
        with pytest.raises(CyclicMoveError):
            await service.move_category(electronics.id, iphone.id)
        with pytest.raises(CyclicMoveError):
            await service.move_category(smartphones.id, smartphones.id)

        assert [c.model_dump() for c in await store.find({})] == before
        await service.check_consistency()

    async def test_move_missing(self, service, electronics_tree):
        electronics, _, _ = electronics_tree
        with pytest.raises(CategoryNotFoundError):
            await service.move_category("missing", None)
        with pytest.raises(CategoryNotFoundError):
            await service.move_category(electronics.id, "missing")

    async def test_round_trip(self, service, electronics_tree):
        electronics, smartphones, iphone = electronics_tree
        books = await service.create_category("Books")

        await service.move_category(smartphones.id, books.id)
        await service.move_category(smartphones.id, electronics.id)

        restored = await service.get_category(smartphones.id)
        assert restored.ancestors == smartphones.ancestors
        assert restored.level == smartphones.level
        restored_iphone = await service.get_category(iphone.id)
        assert restored_iphone.ancestors == iphone.ancestors
        assert restored_iphone.level == iphone.level
        assert (await service.get_category(books.id)).children_count == 0
        await service.check_consistency()

    async def test_deep_subtree_fixup(self, service):
        parent = await service.create_category("Level 0")
        chain = [parent]
        for depth in range(1, 6):
            chain.append(await service.create_category(f"Level {depth}", parent_id=chain[-1].id))
        other = await service.create_category("Other")

        await service.move_category(chain[1].id, other.id)

        for depth, category in enumerate(chain[1:], start=1):
            current = await service.get_category(category.id)
            assert current.level == depth
            assert current.ancestors[0] == other.id
        await service.check_consistency()

    async def test_inactive_descendants_fixed_too(self, service, electronics_tree):
        _, smartphones, iphone = electronics_tree
        await service.deactivate_category(iphone.id)

        await service.move_category(smartphones.id, None)

        assert (await service.get_category(iphone.id)).ancestors == [smartphones.id]
        await service.check_consistency()

    async def test_failed_move_rolls_back(self, service, store, electronics_tree, monkeypatch):
        electronics, smartphones, _ = electronics_tree
        before = [c.model_dump() for c in await store.find({})]

        async def broken(root):
            raise RuntimeError("store went away")

        monkeypatch.setattr(service, "_rebuild_descendants", broken)

        with pytest.raises(RuntimeError):
            await service.move_category(smartphones.id, None)

        assert [c.model_dump() for c in await store.find({})] == before


class TestDelete:
    async def test_scenario_c_children_move_up(self, service, store, electronics_tree):
        electronics, smartphones, iphone = electronics_tree

        assert await service.delete_category(smartphones.id) is True

        assert await store.find_by_id(smartphones.id) is None
        iphone = await service.get_category(iphone.id)
        assert iphone.parent_id == electronics.id
        assert iphone.ancestors == smartphones.ancestors == [electronics.id]
        assert iphone.level == smartphones.level == 1
        assert (await service.get_category(electronics.id)).children_count == 1
        await service.check_consistency()

    async def test_deep_descendants_repaired(self, service):
        electronics = await service.create_category("Electronics")
        smartphones = await service.create_category("Smartphones", parent_id=electronics.id)
        apple = await service.create_category("Apple", parent_id=smartphones.id)
        iphone = await service.create_category("iPhone", parent_id=apple.id)
        pro = await service.create_category("iPhone Pro", parent_id=iphone.id)

        await service.delete_category(smartphones.id)

        assert (await service.get_category(apple.id)).level == 1
        iphone = await service.get_category(iphone.id)
        assert iphone.ancestors == [electronics.id, apple.id]
        assert iphone.level == 2
        pro = await service.get_category(pro.id)
        assert pro.ancestors == [electronics.id, apple.id, iphone.id]
        assert pro.level == 3
        await service.check_consistency()

    async def test_delete_root_promotes_children(self, service, electronics_tree):
        electronics, smartphones, iphone = electronics_tree
        await service.create_category("Laptops", parent_id=electronics.id)

        await service.delete_category(electronics.id)

        roots = await service.get_categories_by_level(0)
        assert [c.name for c in roots] == ["Laptops", "Smartphones"]
        assert (await service.get_category(iphone.id)).ancestors == [smartphones.id]
        await service.check_consistency()

    async def test_delete_leaf_decrements_parent(self, service, electronics_tree):
        _, smartphones, iphone = electronics_tree
        await service.delete_category(iphone.id)
        assert (await service.get_category(smartphones.id)).children_count == 0
        await service.check_consistency()

    async def test_delete_with_several_children(self, service, electronics_tree):
        electronics, smartphones, _ = electronics_tree
        await service.create_category("Android", parent_id=smartphones.id)

        await service.delete_category(smartphones.id)

        assert (await service.get_category(electronics.id)).children_count == 2
        await service.check_consistency()

    async def test_delete_missing(self, service):
        with pytest.raises(CategoryNotFoundError):
            await service.delete_category("missing")


class TestUpdate:
    async def test_rename_recomputes_slug(self, service, electronics_tree):
        _, smartphones, _ = electronics_tree
        updated = await service.update_category(smartphones.id, {"name": "Mobile Phones"})
        assert updated.slug == "mobile-phones"
        assert updated.ancestors == smartphones.ancestors
        assert updated.updated_at is not None

    async def test_rename_to_existing_name(self, service, electronics_tree):
        _, smartphones, _ = electronics_tree
        with pytest.raises(CategoryValidationError):
            await service.update_category(smartphones.id, {"name": "iphone"})
        # renaming to its own name with a different case is fine
        await service.update_category(smartphones.id, {"name": "SMARTPHONES"})

    async def test_concurrent_renames_to_same_name(self, service, electronics_tree):
        electronics, smartphones, _ = electronics_tree
        results = await asyncio.gather(
            service.update_category(electronics.id, {"name": "Gadgets"}),
            service.update_category(smartphones.id, {"name": "gadgets"}),
            return_exceptions=True,
        )
        assert sum(isinstance(r, CategoryValidationError) for r in results) == 1
        assert len(await service.search_categories("gadgets")) == 1

    @pytest.mark.parametrize("field", ["ancestors", "level", "parent_id", "children_count", "color"])
    async def test_tree_owned_fields_rejected(self, service, electronics_tree, field):
        _, smartphones, _ = electronics_tree
        with pytest.raises(CategoryValidationError):
            await service.update_category(smartphones.id, {field: 3})

    async def test_invalid_order(self, service, electronics_tree):
        _, smartphones, _ = electronics_tree
        with pytest.raises(CategoryValidationError):
            await service.update_category(smartphones.id, {"order": -2})

    async def test_update_missing(self, service):
        with pytest.raises(CategoryNotFoundError):
            await service.update_category("missing", {"description": "x"})

    async def test_product_count(self, service, electronics_tree):
        _, smartphones, _ = electronics_tree
        assert (await service.update_product_count(smartphones.id)).product_count == 1
        assert (await service.update_product_count(smartphones.id, 4)).product_count == 5
        assert (await service.update_product_count(smartphones.id, -2)).product_count == 3
        with pytest.raises(CategoryNotFoundError):
            await service.update_product_count("missing")


class TestSearch:
    async def test_name_and_description(self, service, electronics_tree):
        await service.create_category("Accessories", description="Cases for PHONES")

        results = await service.search_categories("phone")
        assert [c.name for c in results] == ["Accessories", "Smartphones", "iPhone"]

    async def test_inactive_excluded(self, service, electronics_tree):
        _, _, iphone = electronics_tree
        await service.deactivate_category(iphone.id)
        assert [c.name for c in await service.search_categories("PHONE")] == ["Smartphones"]

    async def test_blank_query(self, service):
        with pytest.raises(CategoryValidationError):
            await service.search_categories("  ")


class TestConsistency:
    async def test_detects_broken_level(self, service, store, electronics_tree):
        _, _, iphone = electronics_tree
        await store.update_by_id(iphone.id, {"level": 5})

        with pytest.raises(InconsistentStateError) as exc:
            await service.check_consistency()
        assert any(iphone.id in problem for problem in exc.value.problems)

    async def test_rebuild_repairs_tree(self, service, store, electronics_tree):
        electronics, smartphones, iphone = electronics_tree
        await store.update_by_id(iphone.id, {"ancestors": [], "level": 0})
        await store.increment_field(electronics.id, "children_count", 3)

        assert await service.rebuild_tree() > 0

        await service.check_consistency()
        assert (await service.get_category(iphone.id)).ancestors == [electronics.id, smartphones.id]

    @pytest.mark.parametrize("seed", [1, 7, 42])
    async def test_random_operations_keep_invariants(self, service, store, seed):
        rng = random.Random(seed)
        ids = []
        for step in range(60):
            action = rng.choice(["create", "create", "move", "delete"]) if ids else "create"
            if action == "create":
                parent_id = rng.choice(ids + [None])
                ids.append((await service.create_category(f"node-{step}", parent_id=parent_id)).id)
            elif action == "move":
                try:
                    await service.move_category(rng.choice(ids), rng.choice(ids + [None]))
                except CyclicMoveError:
                    pass
            else:
                victim = rng.choice(ids)
                await service.delete_category(victim)
                ids.remove(victim)

            assert await service.check_consistency() == len(ids)

        for category_id in ids:
            descendants = await service.get_descendants(category_id)
            assert {c.id for c in descendants} == await reachable_below(store, category_id)
