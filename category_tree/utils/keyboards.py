# category_tree/utils/keyboards.py
from typing import List, Optional, Tuple
from telegram import InlineKeyboardButton, InlineKeyboardMarkup
from ..models.category import Category

class Keyboards:
    @staticmethod
    def categories_menu(categories: List[Category]) -> InlineKeyboardMarkup:
        """Root categories plus the add button"""
        keyboard = [
            [InlineKeyboardButton("➕ Add root category", callback_data="add_category")],
        ]
        for category in categories:
            keyboard.append([InlineKeyboardButton(
                f"📁 {category.name}",
                callback_data=f"view_category_{category.id}"
            )])
        return InlineKeyboardMarkup(keyboard)

    @staticmethod
    def category_actions(category: Category, children: List[Category]) -> InlineKeyboardMarkup:
        """Children of a category and the actions available on it"""
        keyboard = [
            [InlineKeyboardButton(f"📂 {child.name}", callback_data=f"view_category_{child.id}")]
            for child in children
        ]
        keyboard.extend([
            [
                InlineKeyboardButton("🔀 Move", callback_data=f"move_category_{category.id}"),
                InlineKeyboardButton("❌ Delete", callback_data=f"delete_category_{category.id}")
            ],
            [InlineKeyboardButton("➕ Add subcategory", callback_data=f"add_subcategory_{category.id}")],
        ])

        back = f"view_category_{category.parent_id}" if category.parent_id else "manage_categories"
        keyboard.append([InlineKeyboardButton("🔙 Back", callback_data=back)])
        return InlineKeyboardMarkup(keyboard)

    @staticmethod
    def parent_choices(
        candidates: List[Tuple[Category, int]],
        current_parent_id: Optional[str]
    ) -> InlineKeyboardMarkup:
        """New parent picker; candidates are (category, depth) pairs in tree order"""
        keyboard = []
        if current_parent_id is not None:
            keyboard.append([InlineKeyboardButton("🌐 Make root category", callback_data="set_parent_none")])

        for category, depth in candidates:
            if category.id == current_parent_id:
                continue
            keyboard.append([InlineKeyboardButton(
                f"{'  ' * depth}{category.name}",
                callback_data=f"set_parent_{category.id}"
            )])

        keyboard.append([InlineKeyboardButton("🔙 Cancel", callback_data="manage_categories")])
        return InlineKeyboardMarkup(keyboard)

    @staticmethod
    def confirm_delete(category_id: str) -> InlineKeyboardMarkup:
        keyboard = [
            [
                InlineKeyboardButton("✅ Yes, delete", callback_data=f"confirm_delete_{category_id}"),
                InlineKeyboardButton("🔙 No", callback_data=f"view_category_{category_id}")
            ]
        ]
        return InlineKeyboardMarkup(keyboard)

    @staticmethod
    def search_results(categories: List[Category]) -> InlineKeyboardMarkup:
        keyboard = [
            [InlineKeyboardButton(f"🔎 {category.name}", callback_data=f"view_category_{category.id}")]
            for category in categories
        ]
        keyboard.append([InlineKeyboardButton("🗂 All categories", callback_data="manage_categories")])
        return InlineKeyboardMarkup(keyboard)

    @staticmethod
    def back_to_tree() -> InlineKeyboardMarkup:
        return InlineKeyboardMarkup([
            [InlineKeyboardButton("🗂 All categories", callback_data="manage_categories")]
        ])

    @staticmethod
    def cancel_keyboard() -> InlineKeyboardMarkup:
        return InlineKeyboardMarkup([
            [InlineKeyboardButton("❌ Cancel", callback_data="cancel")]
        ])
