# category_tree/utils/tree.py
from collections import defaultdict
from typing import Dict, Iterable, List, Tuple
from ..models.category import Category, CategoryNode

def sort_key(category: Category) -> Tuple[int, str]:
    """Sibling display order: (order, name)"""
    return category.order, category.name

def build_tree(categories: Iterable[Category]) -> List[CategoryNode]:
    """Assemble flat records into a forest of CategoryNode roots.

    One pass builds a parent -> children index, a second attaches the sorted
    children lists. Records whose parent is not among ``categories`` are not
    reachable from any root and are left out together with their subtrees.
    """
    nodes: Dict[str, CategoryNode] = {}
    for category in categories:
        nodes[category.id] = CategoryNode(**category.model_dump())

    children_of: Dict[str, List[CategoryNode]] = defaultdict(list)
    roots: List[CategoryNode] = []
    for node in nodes.values():
        if node.parent_id is None:
            roots.append(node)
        elif node.parent_id in nodes:
            children_of[node.parent_id].append(node)

    for parent_id, children in children_of.items():
        nodes[parent_id].children = sorted(children, key=sort_key)

    return sorted(roots, key=sort_key)

def render_tree(roots: List[CategoryNode], indent: str = "    ") -> str:
    """Plain-text outline of a forest, one category per line"""
    lines = []
    stack = [(root, 0) for root in reversed(roots)]
    while stack:
        node, depth = stack.pop()
        lines.append(f"{indent * depth}- {node.name} ({node.product_count})")
        stack.extend((child, depth + 1) for child in reversed(node.children))
    return "\n".join(lines)
