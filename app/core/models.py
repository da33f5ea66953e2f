from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional


class EventKind(str, Enum):
    TEXT = "text"
    PHOTO = "photo"
    CALLBACK = "callback"


@dataclass(frozen=True)
class ChatEvent:
    """
    Evento recebido do transporte de chat (Telegram, HTTP).
    O tipo é decidido na borda: texto, foto ou clique em botão.
    """
    chat_id: str
    kind: EventKind
    text: str = ""
    file_id: Optional[str] = None

    @classmethod
    def text_message(cls, chat_id, text: str) -> "ChatEvent":
        return cls(chat_id=str(chat_id), kind=EventKind.TEXT, text=text or "")

    @classmethod
    def photo(cls, chat_id, file_id: str) -> "ChatEvent":
        return cls(chat_id=str(chat_id), kind=EventKind.PHOTO, file_id=file_id)

    @classmethod
    def callback(cls, chat_id, data: str) -> "ChatEvent":
        return cls(chat_id=str(chat_id), kind=EventKind.CALLBACK, text=data or "")


@dataclass(frozen=True)
class KeyboardButton:
    text: str
    callback_data: str


@dataclass
class OutboundMessage:
    """
    Mensagem a ser entregue pelo transporte.
    `keyboard` é uma lista de linhas de botões inline.
    """
    chat_id: str
    text: str
    parse_mode: Optional[str] = None
    keyboard: List[List[KeyboardButton]] = field(default_factory=list)
