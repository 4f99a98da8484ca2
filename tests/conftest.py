import pytest

from category_tree.database.store import MemoryCategoryStore
from category_tree.services.category_service import CategoryService


@pytest.fixture
def store():
    return MemoryCategoryStore()


@pytest.fixture
def service(store):
    return CategoryService(store)


@pytest.fixture
async def electronics_tree(service):
    """Electronics > Smartphones > iPhone"""
    electronics = await service.create_category("Electronics")
    smartphones = await service.create_category("Smartphones", parent_id=electronics.id)
    iphone = await service.create_category("iPhone", parent_id=smartphones.id)
    return electronics, smartphones, iphone
