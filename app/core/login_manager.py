import asyncio
import logging
from typing import Tuple
from sqlalchemy.orm import sessionmaker
from .session_manager import LoginSession, LoggedInUsers
from .login_state import LoginStep
from .registration_manager import FlowStepResult
from .normalizers import normalize_email, mask_email
from .validators import valid_email
from .passwords import check_password
from .exceptions import ProtocolViolation, UnknownStepError
from ..storage.repository import with_repository

logger = logging.getLogger(__name__)

LOGIN_PROMPT = "Digite seu e-mail para login:"
# Mesma resposta para e-mail inexistente e senha errada
LOGIN_FAILED = "E-mail ou senha incorretos! Digite /login para tentar novamente."


class LoginManager:
    """
    Fluxo de login: e-mail, depois senha.
    """

    def __init__(self, db_session_factory: sessionmaker, logged_in: LoggedInUsers) -> None:
        self._db_session_factory = db_session_factory
        self._logged_in = logged_in

    def start(self, chat_id: str, now: float) -> Tuple[LoginSession, str]:
        logger.info(f"Usuário iniciou fluxo de login: chat_id={chat_id}")
        return LoginSession(chat_id=chat_id, last_activity_at=now), LOGIN_PROMPT

    async def handle_text(self, session: LoginSession, text: str) -> FlowStepResult:
        step = session.step
        text = text or ""

        if step == LoginStep.ASKING_EMAIL:
            email = normalize_email(text)
            if not valid_email(email):
                return FlowStepResult(reply="E-mail inválido. Digite novamente:", field_captured=False)
            session.email = email
            session.step = LoginStep.ASKING_PASSWORD
            return FlowStepResult(reply="Digite sua senha:", field_captured=True)

        if step == LoginStep.ASKING_PASSWORD:
            return await self._authenticate(session, text)

        raise UnknownStepError(getattr(step, "value", str(step)))

    async def handle_photo(self, session: LoginSession, file_id: str) -> FlowStepResult:
        if session.step == LoginStep.ASKING_EMAIL:
            raise ProtocolViolation(f"Nesta etapa esperamos uma resposta em texto. {LOGIN_PROMPT}")
        if session.step == LoginStep.ASKING_PASSWORD:
            raise ProtocolViolation("Nesta etapa esperamos uma resposta em texto. Digite sua senha:")
        raise UnknownStepError(getattr(session.step, "value", str(session.step)))

    async def _authenticate(self, session: LoginSession, password: str) -> FlowStepResult:
        email = session.email
        user = await asyncio.to_thread(
            with_repository, self._db_session_factory, lambda repo: repo.find_user_by_email(email)
        )
        authenticated = False
        if user is not None:
            authenticated = await asyncio.to_thread(check_password, password, user.password_hash)

        if not authenticated:
            logger.warning(
                f"Login recusado: chat_id={session.chat_id}, email={mask_email(email)}, "
                f"user_found={user is not None}"
            )
            return FlowStepResult(reply=LOGIN_FAILED, field_captured=False, end_session=True)

        self._logged_in.login(session.chat_id, user.id)
        return FlowStepResult(
            reply=f"✅ Login realizado com sucesso! Bem-vindo(a), {user.full_name}.",
            field_captured=True,
            end_session=True,
        )
