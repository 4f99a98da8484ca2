# category_tree/utils/messages.py
from typing import List
from ..models.category import Category, CategoryNode, CategoryWithPath
from ..utils.formatters import format_datetime
from ..utils.tree import render_tree

class Messages:
    @staticmethod
    def format_tree(roots: List[CategoryNode]) -> str:
        """Whole active forest as an outline"""
        if not roots:
            return "🗂 No categories yet."
        return "🗂 Categories (products in brackets):\n\n" + render_tree(roots)

    @staticmethod
    def format_category(category: CategoryWithPath, children: List[Category]) -> str:
        """Category details"""
        status = "active" if category.is_active else "inactive"
        text = (
            f"📁 {category.full_path}\n\n"
            f"🏷 Slug: {category.slug}\n"
            f"📝 Description: {category.description or '-'}\n"
            f"📶 Level: {category.level}\n"
            f"📊 Products: {category.product_count}\n"
            f"📂 Subcategories: {category.children_count}\n"
            f"🔘 Status: {status}\n"
            f"🕒 Created: {format_datetime(category.created_at)}\n\n"
            "Subcategories:\n"
        )
        if children:
            text += "\n".join(f"- {child.name}" for child in children)
        else:
            text += "- none"
        return text

    @staticmethod
    def format_search_results(query: str, results: List[Category]) -> str:
        if not results:
            return f"🔎 Nothing matches '{query}'."
        return f"🔎 {len(results)} categor{'y' if len(results) == 1 else 'ies'} match '{query}':"
