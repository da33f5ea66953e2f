import logging
import threading
import time
from enum import Enum
from typing import Any, Dict, List, Optional, Union
from dataclasses import dataclass, field
from .registration_state import RegistrationStep, RegistrationData
from .login_state import LoginStep

logger = logging.getLogger(__name__)


class Flow(str, Enum):
    REGISTRATION = "registration"
    LOGIN = "login"


@dataclass
class RegistrationSession:
    """
    Sessão do fluxo de cadastro de um chat.
    Guardada em memória (ou Redis); perder no restart é aceitável.
    """
    chat_id: str
    step: RegistrationStep = RegistrationStep.ASKING_NAME
    data: RegistrationData = field(default_factory=RegistrationData)
    last_activity_at: float = field(default_factory=time.time)
    code_attempts: int = 0
    flow: Flow = field(default=Flow.REGISTRATION, init=False)

    def touch(self, now: float) -> None:
        self.last_activity_at = now


@dataclass
class LoginSession:
    """
    Sessão do fluxo de login de um chat.
    """
    chat_id: str
    step: LoginStep = LoginStep.ASKING_EMAIL
    email: Optional[str] = None
    last_activity_at: float = field(default_factory=time.time)
    flow: Flow = field(default=Flow.LOGIN, init=False)

    def touch(self, now: float) -> None:
        self.last_activity_at = now


Session = Union[RegistrationSession, LoginSession]


def session_to_dict(session: Session) -> Dict[str, Any]:
    """
    Converte a sessão para um dict serializável em JSON.
    """
    if isinstance(session, RegistrationSession):
        return {
            "flow": session.flow.value,
            "chat_id": session.chat_id,
            "step": session.step.value,
            "data": session.data.to_dict(),
            "last_activity_at": session.last_activity_at,
            "code_attempts": session.code_attempts,
        }
    return {
        "flow": session.flow.value,
        "chat_id": session.chat_id,
        "step": session.step.value,
        "email": session.email,
        "last_activity_at": session.last_activity_at,
    }


def session_from_dict(raw: Dict[str, Any]) -> Session:
    """
    Reconstrói a sessão a partir do dict. Levanta ValueError se
    o fluxo ou a etapa forem desconhecidos.
    """
    flow = Flow(raw["flow"])
    if flow == Flow.REGISTRATION:
        return RegistrationSession(
            chat_id=raw["chat_id"],
            step=RegistrationStep(raw["step"]),
            data=RegistrationData.from_dict(raw.get("data", {})),
            last_activity_at=raw.get("last_activity_at", 0.0),
            code_attempts=raw.get("code_attempts", 0),
        )
    return LoginSession(
        chat_id=raw["chat_id"],
        step=LoginStep(raw["step"]),
        email=raw.get("email"),
        last_activity_at=raw.get("last_activity_at", 0.0),
    )


def is_expired(session: Session, now: float, idle_seconds: float) -> bool:
    return now - session.last_activity_at > idle_seconds


class InMemorySessionManager:
    """
    Gerenciador simples de sessões em memória.
    Uma instância por processo; testes podem criar as suas.
    """

    def __init__(self) -> None:
        self._sessions: Dict[str, Session] = {}
        self._lock = threading.Lock()

    def get_session(self, chat_id: str) -> Optional[Session]:
        with self._lock:
            return self._sessions.get(chat_id)

    def save_session(self, chat_id: str, session: Session) -> None:
        with self._lock:
            self._sessions[chat_id] = session
        logger.debug(f"Sessão salva: chat_id={chat_id}, flow={session.flow.value}, step={session.step.value}")

    def clear_session(self, chat_id: str) -> None:
        with self._lock:
            removed = self._sessions.pop(chat_id, None)
        if removed is not None:
            logger.debug(f"Sessão removida: chat_id={chat_id}, flow={removed.flow.value}")

    def expired_ids(self, now: float, idle_seconds: float) -> List[str]:
        with self._lock:
            return [
                chat_id for chat_id, session in self._sessions.items()
                if is_expired(session, now, idle_seconds)
            ]

    def sweep(self, now: float, idle_seconds: float) -> List[str]:
        """
        Remove sessões inativas há mais de idle_seconds.
        Retorna os chat_ids removidos.
        """
        evicted = []
        with self._lock:
            for chat_id, session in list(self._sessions.items()):
                if is_expired(session, now, idle_seconds):
                    del self._sessions[chat_id]
                    evicted.append(chat_id)
        if evicted:
            logger.info(f"Sessões expiradas removidas: total={len(evicted)}")
        return evicted

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)


class LoggedInUsers:
    """
    Registro em memória de chats autenticados (chat_id → user_id).
    Não é persistido: reiniciar o processo desloga todo mundo.
    """

    def __init__(self) -> None:
        self._users: Dict[str, int] = {}
        self._lock = threading.Lock()

    def login(self, chat_id: str, user_id: int) -> None:
        with self._lock:
            self._users[chat_id] = user_id
        logger.info(f"Chat autenticado: chat_id={chat_id}, user_id={user_id}")

    def logout(self, chat_id: str) -> bool:
        with self._lock:
            return self._users.pop(chat_id, None) is not None

    def user_id_for(self, chat_id: str) -> Optional[int]:
        with self._lock:
            return self._users.get(chat_id)

    def is_logged_in(self, chat_id: str) -> bool:
        return self.user_id_for(chat_id) is not None
