# category_tree/bot.py
import asyncio
import logging
from telegram.ext import Application
from .config import Config
from .database.database import Database
from .database.postgres_store import PostgresCategoryStore
from .handlers import CategoryManagementHandler
from .services.category_service import CategoryService

class CategoryTreeBot:
    def __init__(self):
        """Wire the database, the category service and the Telegram handlers"""
        Config.validate()
        self.logger = logging.getLogger(__name__)
        self.db = Database()
        self.category_service = CategoryService(PostgresCategoryStore(self.db))
        self.application = Application.builder().token(Config.TELEGRAM_TOKEN).build()
        self.setup_handlers()

    def setup_handlers(self):
        """Register bot handlers"""
        category_handler = CategoryManagementHandler(self.category_service)
        for handler in category_handler.build_handlers():
            self.application.add_handler(handler)

    async def start(self):
        """Connect to the database and poll until cancelled"""
        await self.db.connect()
        try:
            async with self.application:
                await self.application.start()
                await self.application.updater.start_polling()
                self.logger.info("Bot is polling")
                try:
                    await asyncio.Event().wait()
                finally:
                    await self.application.updater.stop()
                    await self.application.stop()
        finally:
            await self.db.close()
