# category_tree/exceptions.py
from typing import List


class CategoryError(Exception):
    """Base class for category tree errors"""


class CategoryNotFoundError(CategoryError):
    """Referenced category id does not exist"""

    def __init__(self, category_id: str, message: str = None):
        self.category_id = category_id
        super().__init__(message or f"Category not found: {category_id}")


class CategoryValidationError(CategoryError):
    """Invalid input: empty or duplicate name, disallowed field, blank query"""


class CyclicMoveError(CategoryError):
    """New parent is the moved category itself or one of its descendants"""

    def __init__(self, category_id: str, new_parent_id: str):
        self.category_id = category_id
        self.new_parent_id = new_parent_id
        super().__init__(
            f"Cannot move category {category_id} under {new_parent_id}: "
            "the new parent is inside its own subtree"
        )


class InconsistentStateError(CategoryError):
    """One or more tree invariants do not hold"""

    def __init__(self, problems: List[str]):
        self.problems = list(problems)
        super().__init__(
            f"{len(self.problems)} tree invariant violation(s): " + "; ".join(self.problems)
        )
