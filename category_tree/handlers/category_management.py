# category_tree/handlers/category_management.py
import logging
import warnings
from typing import List, Optional, Tuple
from telegram import Update
from telegram.ext import (
    ContextTypes, ConversationHandler, CommandHandler,
    MessageHandler, CallbackQueryHandler, filters
)
from telegram.warnings import PTBUserWarning
from .base_handler import BaseHandler
from ..exceptions import CategoryError, CategoryNotFoundError, CategoryValidationError
from ..models.category import Category, CategoryNode

# conversation states
WAITING_CATEGORY_NAME = 1

logger = logging.getLogger(__name__)

def callback_id(data: str) -> Optional[str]:
    """Trailing id of callback data like ``view_category_<id>``; None for ``..._none``"""
    value = data.rsplit('_', 1)[1]
    return None if value == 'none' else value

def flatten_tree(roots: List[CategoryNode], skip_id: Optional[str] = None) -> List[Tuple[Category, int]]:
    """(category, depth) pairs in display order, leaving out the subtree of ``skip_id``"""
    result = []
    stack = [(root, 0) for root in reversed(roots)]
    while stack:
        node, depth = stack.pop()
        if node.id == skip_id:
            continue
        result.append((node, depth))
        stack.extend((child, depth + 1) for child in reversed(node.children))
    return result

class CategoryManagementHandler(BaseHandler):
    """Admin handlers for browsing and restructuring the category tree"""

    async def _deny(self, update: Update) -> bool:
        if await self.is_admin(update.effective_user.id):
            return False
        await self.reply(update, "⛔️ You do not have access to this section.")
        return True

    async def show_tree(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        """Show the whole tree with the root categories as buttons"""
        if update.callback_query:
            await update.callback_query.answer()
        if await self._deny(update):
            return

        roots = await self.category_service.get_category_tree()
        await self.reply(
            update,
            self.messages.format_tree(roots),
            reply_markup=self.keyboards.categories_menu(roots)
        )

    async def view_category(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        """Show category details, its path and its children"""
        query = update.callback_query
        await query.answer()
        if await self._deny(update):
            return

        category_id = callback_id(query.data)
        try:
            category = await self.category_service.get_category_with_path(category_id)
        except CategoryNotFoundError:
            await query.edit_message_text(
                "❌ Category not found.",
                reply_markup=self.keyboards.back_to_tree()
            )
            return

        children = await self.category_service.get_children(category_id)
        await query.edit_message_text(
            self.messages.format_category(category, children),
            reply_markup=self.keyboards.category_actions(category, children)
        )

    async def start_add_category(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        """Ask for the name of a new root category or subcategory"""
        query = update.callback_query
        await query.answer()
        if await self._deny(update):
            return ConversationHandler.END

        parent_id = None
        if query.data.startswith("add_subcategory_"):
            parent_id = callback_id(query.data)
        context.user_data['new_category_parent_id'] = parent_id

        await query.edit_message_text(
            "📝 Enter the category name:",
            reply_markup=self.keyboards.cancel_keyboard()
        )
        return WAITING_CATEGORY_NAME

    async def handle_category_name(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        """Create the category with the received name"""
        name = update.message.text
        parent_id = context.user_data.get('new_category_parent_id')

        try:
            category = await self.category_service.create_category(name, parent_id=parent_id)
        except CategoryValidationError as e:
            await update.message.reply_text(
                f"❌ {e}\nPlease send another name:",
                reply_markup=self.keyboards.cancel_keyboard()
            )
            return WAITING_CATEGORY_NAME
        except CategoryError as e:
            await update.message.reply_text(f"❌ {e}", reply_markup=self.keyboards.back_to_tree())
            context.user_data.clear()
            return ConversationHandler.END

        await update.message.reply_text(
            f"✅ Category '{category.name}' created.",
            reply_markup=self.keyboards.back_to_tree()
        )
        context.user_data.clear()
        return ConversationHandler.END

    async def start_move_category(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        """Offer every category outside the moved subtree as the new parent"""
        query = update.callback_query
        await query.answer()
        if await self._deny(update):
            return

        category_id = callback_id(query.data)
        try:
            category = await self.category_service.get_category(category_id)
        except CategoryNotFoundError:
            await query.edit_message_text("❌ Category not found.", reply_markup=self.keyboards.back_to_tree())
            return

        context.user_data['moving_category_id'] = category_id
        roots = await self.category_service.get_category_tree()
        candidates = flatten_tree(roots, skip_id=category_id)

        await query.edit_message_text(
            f"🔀 Choose the new parent of '{category.name}':",
            reply_markup=self.keyboards.parent_choices(candidates, category.parent_id)
        )

    async def handle_move_category(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        """Move the selected category under the chosen parent"""
        query = update.callback_query
        await query.answer()
        if await self._deny(update):
            return

        category_id = context.user_data.pop('moving_category_id', None)
        if category_id is None:
            await query.edit_message_text("⚠️ Nothing to move.", reply_markup=self.keyboards.back_to_tree())
            return

        new_parent_id = callback_id(query.data)
        try:
            await self.category_service.move_category(category_id, new_parent_id)
            category = await self.category_service.get_category_with_path(category_id)
        except CategoryError as e:
            logger.warning(f"Moving category {category_id} failed: {e}")
            await query.edit_message_text(f"❌ {e}", reply_markup=self.keyboards.back_to_tree())
            return

        await query.edit_message_text(
            f"✅ Moved to: {category.full_path}",
            reply_markup=self.keyboards.back_to_tree()
        )

    async def confirm_delete_category(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        """Ask before deleting"""
        query = update.callback_query
        await query.answer()
        if await self._deny(update):
            return

        category_id = callback_id(query.data)
        await query.edit_message_text(
            "⚠️ Delete this category? Its subcategories move up one level.",
            reply_markup=self.keyboards.confirm_delete(category_id)
        )

    async def handle_delete_category(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        """Delete the category"""
        query = update.callback_query
        await query.answer()
        if await self._deny(update):
            return

        category_id = callback_id(query.data)
        try:
            await self.category_service.delete_category(category_id)
        except CategoryError as e:
            await query.edit_message_text(f"❌ {e}", reply_markup=self.keyboards.back_to_tree())
            return

        await query.edit_message_text("✅ Category deleted.", reply_markup=self.keyboards.back_to_tree())

    async def search_categories(self, update: Update, context: ContextTypes.DEFAULT_TYPE):
        """/search_category <text>"""
        if await self._deny(update):
            return

        query_text = " ".join(context.args or [])
        try:
            results = await self.category_service.search_categories(query_text)
        except CategoryValidationError:
            await update.message.reply_text("Usage: /search_category <text>")
            return

        await update.message.reply_text(
            self.messages.format_search_results(query_text, results),
            reply_markup=self.keyboards.search_results(results)
        )

    def build_handlers(self) -> list:
        """Telegram handlers in registration order"""
        # the name arrives as a text message, so the conversation is tracked per chat/user
        with warnings.catch_warnings():
            warnings.filterwarnings("ignore", message=".*per_message=False", category=PTBUserWarning)
            add_conversation = ConversationHandler(
                entry_points=[
                    CallbackQueryHandler(self.start_add_category, pattern=r"^add_(sub)?category")
                ],
                states={
                    WAITING_CATEGORY_NAME: [
                        MessageHandler(filters.TEXT & ~filters.COMMAND, self.handle_category_name)
                    ],
                },
                fallbacks=[
                    CallbackQueryHandler(self.cancel_conversation, pattern=r"^cancel$"),
                    CommandHandler("cancel", self.cancel_conversation)
                ],
                per_message=False,
            )

        return [
            add_conversation,
            CommandHandler("categories", self.show_tree),
            CommandHandler("search_category", self.search_categories),
            CallbackQueryHandler(self.show_tree, pattern=r"^manage_categories$"),
            CallbackQueryHandler(self.view_category, pattern=r"^view_category_"),
            CallbackQueryHandler(self.start_move_category, pattern=r"^move_category_"),
            CallbackQueryHandler(self.handle_move_category, pattern=r"^set_parent_"),
            CallbackQueryHandler(self.confirm_delete_category, pattern=r"^delete_category_"),
            CallbackQueryHandler(self.handle_delete_category, pattern=r"^confirm_delete_"),
        ]
