"""Main application entry point."""
import asyncio
import logging
import signal
import sys
from typing import Optional
from warnings import filterwarnings
from telegram.warnings import PTBUserWarning

# Suppress the warning about CallbackQueryHandler and per_message
filterwarnings(action="ignore", message=r".*CallbackQueryHandler", category=PTBUserWarning)

from telegram.ext import (
    Application,
    CallbackQueryHandler,
    CommandHandler,
    ConversationHandler,
    MessageHandler,
    filters,
)

from kidlingo.config import settings
from kidlingo.models.base import init_db, SessionLocal
from kidlingo.monitoring import start_monitoring
from kidlingo.services.lesson_service import LessonService
from kidlingo.services.progress_service import ProgressService
from kidlingo.services.session_service import LessonSessionService
from kidlingo.bot import (
    handle_start,
    handle_callback,
    handle_message,
    handle_text_answer,
    MAIN_MENU,
    LESSON,
)


class KidLingoApp:
    """Main application class."""

    def __init__(self):
        """Initialize the application."""
        self.application: Optional[Application] = None
        self.running = False
        self.logger = logging.getLogger(__name__)

    def build_conversation_handler(self) -> ConversationHandler:
        """Create conversation handler for both messages and callbacks."""
        return ConversationHandler(
            entry_points=[CommandHandler("start", handle_start)],
            states={
                MAIN_MENU: [
                    MessageHandler(filters.TEXT & ~filters.COMMAND, handle_message),
                    CallbackQueryHandler(handle_callback),
                ],
                LESSON: [
                    MessageHandler(filters.TEXT & ~filters.COMMAND, handle_text_answer),
                    CallbackQueryHandler(handle_callback),
                ],
            },
            fallbacks=[CommandHandler("start", handle_start)],
            per_message=False,
        )

    async def start(self) -> None:
        """Start the application."""
        if self.running:
            return

        try:
            settings.validate()

            # Initialize database
            init_db()
            self.logger.info("Database initialized")

            lessons_count = LessonService().get_lessons_count()
            self.logger.info(f"Loaded {lessons_count} lessons from {settings.paths.lessons_dir}")

            if settings.monitoring.enabled:
                start_monitoring(settings.monitoring.port)
                self.logger.info(f"Metrics server listening on port {settings.monitoring.port}")

            # Create application
            self.application = Application.builder().token(settings.bot.token).build()
            self.application.add_handler(self.build_conversation_handler())
            self.logger.info("Handlers added")

            # Start application
            await self.application.initialize()
            await self.application.start()
            await self.application.updater.start_polling()
            self.logger.info("Application started")

            self.running = True

        except Exception as e:
            self.logger.error(f"Failed to start application: {e}")
            await self.stop()
            raise

    def save_sessions(self) -> None:
        """Save the progress of every lesson still being played."""
        db = SessionLocal()
        try:
            session_service = LessonSessionService(LessonService(), ProgressService(db))
            session_service.save_all()
            self.logger.info(f"Saved {len(session_service.active_lessons)} active lessons")
        finally:
            db.close()

    async def stop(self) -> None:
        """Stop the application."""
        if not self.running and not self.application:
            return

        try:
            self.save_sessions()

            # Stop application
            if self.application:
                if self.running:
                    await self.application.updater.stop()
                    await self.application.stop()
                    await self.application.shutdown()
                self.application = None
                self.logger.info("Application stopped")

            self.running = False

        except Exception as e:
            self.logger.error(f"Error while stopping application: {e}")
            self.running = False
            self.application = None
            raise

    def run(self) -> None:
        """Run the application."""
        # Create event loop
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)

        # Handle signals
        def signal_handler(signum, frame):
            """Handle signals like SIGINT (Ctrl+C)."""
            self.logger.info(f"Received signal {signum}. Shutting down...")
            loop.stop()

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

        try:
            # Start bot
            loop.run_until_complete(self.start())

            # Run event loop
            loop.run_forever()

        except KeyboardInterrupt:
            self.logger.info("Received keyboard interrupt")
        finally:
            # Stop bot
            loop.run_until_complete(self.stop())
            loop.close()


def main() -> None:
    """Main entry point."""
    from kidlingo.config import ensure_directories
    from kidlingo.logging_config import setup_logging

    ensure_directories()
    setup_logging("Starting KidLingo ...")
    try:
        KidLingoApp().run()
    except ValueError as e:
        logging.getLogger(__name__).error(f"Invalid configuration: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
