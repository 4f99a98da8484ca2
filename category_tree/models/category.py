# category_tree/models/category.py
import uuid
from typing import Optional, List
from pydantic import Field, field_validator, model_validator
from .base import TimeStampedModel
from ..utils.formatters import slugify


def new_category_id() -> str:
    return uuid.uuid4().hex


class Category(TimeStampedModel):
    """Category node stored as a flat record in the forest"""
    id: str = Field(default_factory=new_category_id)
    name: str
    slug: str = ""
    description: Optional[str] = None
    parent_id: Optional[str] = None
    ancestors: List[str] = []
    level: int = Field(default=0, ge=0)
    path: str = ""
    is_active: bool = True
    product_count: int = 0
    children_count: int = 0
    order: int = Field(default=0, ge=0)

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Name is required")
        return value

    @model_validator(mode="after")
    def derive_fields(self) -> "Category":
        # slug and path always follow name and ancestors
        self.slug = slugify(self.name)
        self.path = "/".join([*self.ancestors, self.id])
        return self

    @property
    def is_root(self) -> bool:
        return self.parent_id is None


class CategoryNode(Category):
    """Category with its active subtree attached, used for tree reads"""
    children: List["CategoryNode"] = []


class CategoryWithPath(Category):
    """Category with its human readable location, e.g. "Electronics > Smartphones" """
    full_path: str


CategoryNode.model_rebuild()
