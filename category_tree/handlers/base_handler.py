# category_tree/handlers/base_handler.py
from telegram import Update, InlineKeyboardMarkup
from telegram.ext import ContextTypes, ConversationHandler
from ..config import Config
from ..utils.keyboards import Keyboards
from ..utils.messages import Messages

class BaseHandler:
    """Base class for handlers"""
    def __init__(self, category_service):
        self.category_service = category_service
        self.keyboards = Keyboards()
        self.messages = Messages()

    @staticmethod
    async def cancel_conversation(update: Update, context: ContextTypes.DEFAULT_TYPE):
        """Cancel the running conversation"""
        context.user_data.clear()
        if update.callback_query:
            await update.callback_query.answer()
            await update.callback_query.edit_message_text("❌ Cancelled.")
        else:
            await update.message.reply_text("❌ Cancelled.")
        return ConversationHandler.END

    @staticmethod
    async def reply(update: Update, text: str, reply_markup: InlineKeyboardMarkup = None):
        """Edit the callback message, or answer a plain message"""
        if update.callback_query:
            await update.callback_query.edit_message_text(text, reply_markup=reply_markup)
        else:
            await update.message.reply_text(text, reply_markup=reply_markup)

    async def is_admin(self, user_id: int) -> bool:
        """Check admin access"""
        return user_id in Config.ADMIN_IDS
