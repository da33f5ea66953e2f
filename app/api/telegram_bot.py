"""
Transporte Telegram: converte updates em ChatEvent e entrega a resposta do engine.
"""
import asyncio
import logging
from typing import Optional

from telegram import Update
from telegram.ext import (
    Application,
    ApplicationBuilder,
    CallbackQueryHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from ..config import AppConfig
from ..core.engine import ChatbotEngine
from ..core.models import ChatEvent, OutboundMessage
from ..infra.chat_sender import TelegramSender, build_reply_markup

logger = logging.getLogger(__name__)

ENGINE_KEY = "engine"
SWEEPER_KEY = "sweeper"


async def _deliver(update: Update, message: OutboundMessage) -> None:
    await update.effective_chat.send_message(
        text=message.text,
        parse_mode=message.parse_mode,
        reply_markup=build_reply_markup(message),
    )


async def on_text(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    engine: ChatbotEngine = context.application.bot_data[ENGINE_KEY]
    event = ChatEvent.text_message(update.effective_chat.id, update.effective_message.text)
    await _deliver(update, await engine.handle_event(event))


async def on_photo(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    engine: ChatbotEngine = context.application.bot_data[ENGINE_KEY]
    # A última é a de maior resolução
    file_id = update.effective_message.photo[-1].file_id
    event = ChatEvent.photo(update.effective_chat.id, file_id)
    await _deliver(update, await engine.handle_event(event))


async def on_callback(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    engine: ChatbotEngine = context.application.bot_data[ENGINE_KEY]
    query = update.callback_query
    await query.answer()
    event = ChatEvent.callback(update.effective_chat.id, query.data)
    await _deliver(update, await engine.handle_event(event))


async def on_error(update: Optional[object], context: ContextTypes.DEFAULT_TYPE) -> None:
    logger.error(f"Erro no processamento do update: error={type(context.error).__name__}: {context.error}", exc_info=context.error)


async def _post_init(application: Application) -> None:
    engine: ChatbotEngine = application.bot_data[ENGINE_KEY]
    application.bot_data[SWEEPER_KEY] = asyncio.create_task(engine.run_sweeper())
    logger.info("Bot do Telegram pronto")


async def _post_shutdown(application: Application) -> None:
    sweeper = application.bot_data.get(SWEEPER_KEY)
    if sweeper is not None:
        sweeper.cancel()
    logger.info("Bot do Telegram encerrado")


def build_application(config: AppConfig, engine: Optional[ChatbotEngine] = None) -> Application:
    """
    Monta a Application do python-telegram-bot com os handlers do bot.
    """
    application = (
        ApplicationBuilder()
        .token(config.telegram_token)
        .post_init(_post_init)
        .post_shutdown(_post_shutdown)
        .build()
    )
    application.bot_data[ENGINE_KEY] = engine or ChatbotEngine.from_config(config, sender=TelegramSender(application.bot))

    # Comandos também passam pelo engine, que decide o que cada um faz
    application.add_handler(MessageHandler(filters.PHOTO, on_photo))
    application.add_handler(CallbackQueryHandler(on_callback))
    application.add_handler(MessageHandler(filters.TEXT, on_text))
    application.add_error_handler(on_error)
    return application


def run_polling(config: AppConfig) -> None:
    logger.info("Inicializando bot de Telegram...")
    build_application(config).run_polling(allowed_updates=Update.ALL_TYPES)
