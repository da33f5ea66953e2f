import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Dict

logger = logging.getLogger(__name__)


class ChatLocks:
    """
    Um asyncio.Lock por chat_id.

    Eventos do mesmo chat são processados um de cada vez; chats
    diferentes seguem em paralelo. O lock é descartado quando
    ninguém mais o usa, para o dicionário não crescer sem limite.
    """

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, chat_id: str):
        lock = self._locks.get(chat_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[chat_id] = lock
        self._users[chat_id] = self._users.get(chat_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[chat_id] -= 1
            if self._users[chat_id] == 0:
                del self._users[chat_id]
                del self._locks[chat_id]

    def is_busy(self, chat_id: str) -> bool:
        return chat_id in self._users

    def __len__(self) -> int:
        return len(self._locks)
