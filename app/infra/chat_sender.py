"""
Envio de mensagens fora do ciclo pergunta/resposta (ex: aviso ao
administrador de um novo cadastro).
"""
import logging
from typing import List, Optional

from telegram import InlineKeyboardButton, InlineKeyboardMarkup

from ..core.models import OutboundMessage

logger = logging.getLogger(__name__)


def build_reply_markup(message: OutboundMessage) -> Optional[InlineKeyboardMarkup]:
    if not message.keyboard:
        return None
    return InlineKeyboardMarkup([
        [InlineKeyboardButton(button.text, callback_data=button.callback_data) for button in row]
        for row in message.keyboard
    ])


class ChatSender:
    async def send(self, message: OutboundMessage) -> None:
        raise NotImplementedError


class LoggingSender(ChatSender):
    """
    Usado no transporte HTTP, onde não há canal para mensagens espontâneas.
    Guarda as mensagens para inspeção.
    """

    def __init__(self) -> None:
        self.sent: List[OutboundMessage] = []

    async def send(self, message: OutboundMessage) -> None:
        self.sent.append(message)
        logger.info(f"Mensagem espontânea (não entregue): chat_id={message.chat_id}, text={message.text[:80]}")


class TelegramSender(ChatSender):
    """
    Envia mensagens pelo bot do Telegram (python-telegram-bot).
    """

    def __init__(self, bot) -> None:
        self._bot = bot

    async def send(self, message: OutboundMessage) -> None:
        await self._bot.send_message(
            chat_id=message.chat_id,
            text=message.text,
            parse_mode=message.parse_mode,
            reply_markup=build_reply_markup(message),
        )
