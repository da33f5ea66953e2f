import asyncio
import logging
import time
from typing import Any, Callable, Dict, List, Optional
from sqlalchemy.orm import sessionmaker
from telegram.helpers import escape_markdown
from .session_manager import InMemorySessionManager, LoggedInUsers, Flow, Session, is_expired
from ..session.redis_session_manager import RedisSessionManager
from .models import ChatEvent, EventKind, KeyboardButton, OutboundMessage
from .registration_manager import RegistrationManager, FlowStepResult
from .login_manager import LoginManager
from .login_state import LoginStep
from .registration_state import RegistrationStep
from .locks import ChatLocks
from .normalizers import is_cancel_keyword
from .exceptions import ExternalDependencyError, DuplicateSiteError, ProtocolViolation, SessionStateError
from ..config import AppConfig
from ..infra.email_service import EmailService
from ..infra.chat_sender import ChatSender, LoggingSender
from ..domain.notices import NoticeFetcher, format_notices_message
from ..storage.database import create_session_factory
from ..storage.repository import with_repository

logger = logging.getLogger(__name__)

MENU_MESSAGE = "👋 Olá! Eu sou o bot de editais de leilões.\nEscolha uma opção:"
MENU_KEYBOARD = [
    [KeyboardButton("📝 Cadastro", "/cadastro"), KeyboardButton("🔑 Login", "/login")],
    [KeyboardButton("📄 Editais", "/sites"), KeyboardButton("❓ Ajuda", "/ajuda")],
]
HELP_MESSAGE = (
    "Comandos:\n"
    "/start – menu inicial\n"
    "/cadastro – criar conta\n"
    "/login – entrar\n"
    "/logout – sair\n"
    "/sites – escolher um site para buscar editais\n"
    "/editais <id> – editais de um site\n"
    "/assinar <id> – assinar um site\n"
    "/meussites – sites assinados\n"
    "/cancelar – cancelar a operação atual\n"
    "/ajuda – ajuda\n"
    "/sobre – sobre o sistema"
)
ABOUT_MESSAGE = "Bot de leilões com cadastro, login e acesso a editais."
UNKNOWN_COMMAND = "Comando não reconhecido. Digite /ajuda para ver os comandos."
NO_SESSION = "Não entendi. Digite /start para ver o menu ou /ajuda para ver os comandos."
EXPIRED_MESSAGE = "⏰ Sua sessão expirou por inatividade. Digite /cadastro ou /login para recomeçar."
CANCELLED_MESSAGE = "Operação cancelada. Digite /start para voltar ao menu."
NOTHING_TO_CANCEL = "Nenhuma operação em andamento."
LOGIN_REQUIRED = "Você precisa estar logado. Digite /login para entrar."
ALREADY_LOGGED_IN = "Você já está logado. Use /logout para sair."
SESSION_ERROR = "Ocorreu um erro no seu atendimento. Digite /cadastro ou /login para recomeçar."
SERVICE_UNAVAILABLE = "Serviço indisponível no momento. Tente novamente em instantes."
GENERIC_ERROR = "Desculpe, ocorreu um erro inesperado. Tente novamente."
ADD_SITE_USAGE = "Formato inválido. Use: /adicionarsite Nome do Site | https://url.com [| seletor CSS]"

# Etapas em que o texto é senha: "/abc123" é resposta, não comando desconhecido
SECRET_STEPS = {
    RegistrationStep.ASKING_PASSWORD,
    RegistrationStep.CONFIRMING_PASSWORD,
    LoginStep.ASKING_PASSWORD,
}

# Por quanto tempo um chat expirado ainda recebe o aviso de sessão expirada
EXPIRED_NOTICE_RETENTION_SECONDS = 24 * 60 * 60


class ChatbotEngine:
    """
    Núcleo lógico do chatbot.

    - Recebe eventos já tipados (texto, foto, clique em botão)
    - Serializa eventos do mesmo chat com um lock por chat_id
    - Trata comandos (/start, /cadastro, /login, /sites, ...)
    - Encaminha o resto para o fluxo da sessão (cadastro ou login)
    - Salva ou descarta a sessão depois de cada etapa
    - Sempre devolve exatamente uma resposta
    """

    def __init__(
        self,
        config: AppConfig,
        db_session_factory: sessionmaker,
        email_service: EmailService,
        sender: Optional[ChatSender] = None,
        sessions=None,
        logged_in: Optional[LoggedInUsers] = None,
        notice_fetcher: Optional[NoticeFetcher] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._config = config
        self._db_session_factory = db_session_factory
        self._sender = sender or LoggingSender()
        self._sessions = sessions if sessions is not None else InMemorySessionManager()
        self._logged_in = logged_in or LoggedInUsers()
        self._notice_fetcher = notice_fetcher or NoticeFetcher(
            timeout=config.notice_fetch_timeout_seconds,
            user_agent=config.notice_user_agent,
            max_results=config.notice_max_results,
        )
        self._clock = clock
        self._locks = ChatLocks()
        # chat_id -> momento da remoção por inatividade, até o aviso ser dado
        self._expired_chats: Dict[str, float] = {}

        self._registration_manager = RegistrationManager(
            db_session_factory=db_session_factory,
            email_service=email_service,
            sender=self._sender,
            config=config,
        )
        self._login_manager = LoginManager(db_session_factory=db_session_factory, logged_in=self._logged_in)

        self._commands = {
            "/start": self._cmd_start,
            "/ajuda": self._cmd_help,
            "/help": self._cmd_help,
            "/sobre": self._cmd_about,
            "/cancelar": self._cmd_cancel,
            "/reiniciar": self._cmd_cancel,
            "/cadastro": self._cmd_register,
            "/login": self._cmd_login,
            "/logout": self._cmd_logout,
            "/sites": self._cmd_sites,
            "/editais": self._cmd_notices,
            "/assinar": self._cmd_subscribe,
            "/meussites": self._cmd_my_sites,
            "/adicionarsite": self._cmd_add_site,
        }

    @classmethod
    def from_config(cls, config: AppConfig, sender: Optional[ChatSender] = None) -> "ChatbotEngine":
        """
        Monta o engine com os colaboradores reais descritos pela configuração.
        """
        # Escolher gerenciador de sessões: Redis se configurado, senão InMemory
        if config.redis_url and config.redis_url.strip():
            try:
                sessions = RedisSessionManager(
                    redis_url=config.redis_url,
                    session_ttl_seconds=config.session_idle_timeout_seconds,
                )
                logger.info("Sessões usando Redis")
            except Exception as e:
                logger.error(f"Erro ao inicializar RedisSessionManager: {e}, usando InMemory como fallback")
                sessions = InMemorySessionManager()
        else:
            sessions = InMemorySessionManager()
            logger.info("Sessões usando armazenamento em memória (REDIS_URL não configurado)")

        db_type = "sqlite" if "sqlite" in config.database_url else "postgres" if "postgres" in config.database_url else "unknown"
        logger.info(
            f"ChatbotEngine inicializado: database_type={db_type}, transport={config.transport}, "
            f"tax_id_validation={config.tax_id_validation}, idle_timeout={config.session_idle_timeout_seconds}s"
        )

        # Em produção, não criar tabelas automaticamente (usar Alembic)
        create_tables = config.env == "dev"
        return cls(
            config=config,
            db_session_factory=create_session_factory(config.database_url, create_tables=create_tables),
            email_service=EmailService(config),
            sender=sender,
            sessions=sessions,
        )

    @property
    def logged_in(self) -> LoggedInUsers:
        return self._logged_in

    @property
    def db_session_factory(self) -> sessionmaker:
        return self._db_session_factory

    @property
    def session_backend(self) -> str:
        return "redis" if isinstance(self._sessions, RedisSessionManager) else "memory"

    @property
    def pending_expiry_notices(self) -> int:
        return len(self._expired_chats)

    def _reply(self, chat_id: str, text: str, **kwargs) -> OutboundMessage:
        return OutboundMessage(chat_id=chat_id, text=text, **kwargs)

    async def handle_event(self, event: ChatEvent) -> OutboundMessage:
        """
        Processa um evento do chat e retorna a resposta.

        Nunca levanta exceção: falhas inesperadas são logadas e viram
        uma resposta genérica.
        """
        chat_id = event.chat_id
        logger.debug(f"handle_event iniciado: chat_id={chat_id}, kind={event.kind.value}")
        async with self._locks.hold(chat_id):
            try:
                return await self._dispatch(event)
            except ExternalDependencyError as e:
                logger.error(
                    f"Falha em dependência externa: chat_id={chat_id}, collaborator={e.collaborator}, "
                    f"code={e.code}, error={e.message}"
                )
                return self._reply(chat_id, SERVICE_UNAVAILABLE)
            except Exception as e:
                logger.error(
                    f"Erro inesperado ao processar evento: chat_id={chat_id}, kind={event.kind.value}, "
                    f"error={type(e).__name__}: {e}",
                    exc_info=True,
                )
                return self._reply(chat_id, GENERIC_ERROR)

    async def _dispatch(self, event: ChatEvent) -> OutboundMessage:
        chat_id = event.chat_id
        now = self._clock()

        session = self._sessions.get_session(chat_id)
        if session is not None and is_expired(session, now, self._config.session_idle_timeout_seconds):
            logger.info(f"Sessão expirada encontrada no acesso: chat_id={chat_id}, step={session.step.value}")
            self._sessions.clear_session(chat_id)
            self._expired_chats[chat_id] = now
            session = None

        text = (event.text or "").strip()
        is_command = event.kind in (EventKind.TEXT, EventKind.CALLBACK) and text.startswith("/")
        if is_command and not self._is_secret_answer(event, text, session):
            self._expired_chats.pop(chat_id, None)
            return await self._handle_command(chat_id, text, session, now)

        if event.kind == EventKind.CALLBACK:
            logger.warning(f"Callback desconhecido: chat_id={chat_id}, data={text[:50]}")
            return self._reply(chat_id, UNKNOWN_COMMAND)

        if event.kind == EventKind.TEXT and is_cancel_keyword(text):
            self._expired_chats.pop(chat_id, None)
            return self._cancel(chat_id, session)

        if session is None:
            if self._expired_chats.pop(chat_id, None) is not None:
                return self._reply(chat_id, EXPIRED_MESSAGE)
            return self._reply(chat_id, NO_SESSION)

        return await self._route_to_flow(session, event, now)

    async def _route_to_flow(self, session: Session, event: ChatEvent, now: float) -> OutboundMessage:
        chat_id = session.chat_id
        manager = self._registration_manager if session.flow == Flow.REGISTRATION else self._login_manager
        step = getattr(session.step, "value", session.step)

        try:
            if event.kind == EventKind.PHOTO:
                result: FlowStepResult = await manager.handle_photo(session, event.file_id)
            else:
                result = await manager.handle_text(session, event.text)
        except ProtocolViolation as e:
            logger.info(f"Tipo de entrada inesperado: chat_id={chat_id}, step={step}, kind={event.kind.value}")
            return self._reply(chat_id, e.message)
        except SessionStateError as e:
            logger.error(f"Sessão inconsistente descartada: chat_id={chat_id}, step={step}, code={e.code}, error={e.message}")
            self._sessions.clear_session(chat_id)
            return self._reply(chat_id, SESSION_ERROR)
        except ExternalDependencyError as e:
            logger.error(
                f"Falha em dependência externa no fluxo: chat_id={chat_id}, flow={session.flow.value}, "
                f"step={step}, collaborator={e.collaborator}, code={e.code}"
            )
            return self._reply(chat_id, SERVICE_UNAVAILABLE)

        if result.field_captured:
            session.touch(now)
        if result.end_session:
            self._sessions.clear_session(chat_id)
        else:
            self._sessions.save_session(chat_id, session)
        return self._reply(chat_id, result.reply)

    async def _handle_command(self, chat_id: str, text: str, session: Optional[Session], now: float) -> OutboundMessage:
        command, args = self._split_command(text)
        handler = self._commands.get(command)
        if handler is None:
            logger.debug(f"Comando desconhecido: chat_id={chat_id}, command={command}")
            return self._reply(chat_id, UNKNOWN_COMMAND)
        logger.info(f"Comando recebido: chat_id={chat_id}, command={command}")
        return await handler(chat_id, args.strip(), session, now)

    @staticmethod
    def _split_command(text: str):
        command, _, args = text.partition(" ")
        # "/start@NomeDoBot" em grupos
        return command.split("@", 1)[0].lower(), args

    def _is_secret_answer(self, event: ChatEvent, text: str, session: Optional[Session]) -> bool:
        if event.kind != EventKind.TEXT or session is None or session.step not in SECRET_STEPS:
            return False
        command, _ = self._split_command(text)
        return command not in self._commands

    def _cancel(self, chat_id: str, session: Optional[Session]) -> OutboundMessage:
        if session is None:
            return self._reply(chat_id, NOTHING_TO_CANCEL)
        self._sessions.clear_session(chat_id)
        logger.info(f"Fluxo cancelado pelo usuário: chat_id={chat_id}, flow={session.flow.value}")
        return self._reply(chat_id, CANCELLED_MESSAGE)

    def _is_admin(self, chat_id: str) -> bool:
        return bool(self._config.admin_chat_id) and chat_id == self._config.admin_chat_id

    def _can_browse(self, chat_id: str) -> bool:
        return self._logged_in.is_logged_in(chat_id) or self._is_admin(chat_id)

    async def _repo(self, action):
        return await asyncio.to_thread(with_repository, self._db_session_factory, action)

    async def _cmd_start(self, chat_id, args, session, now) -> OutboundMessage:
        if session is not None:
            self._sessions.clear_session(chat_id)
        return self._reply(chat_id, MENU_MESSAGE, keyboard=MENU_KEYBOARD)

    async def _cmd_help(self, chat_id, args, session, now) -> OutboundMessage:
        return self._reply(chat_id, HELP_MESSAGE)

    async def _cmd_about(self, chat_id, args, session, now) -> OutboundMessage:
        return self._reply(chat_id, ABOUT_MESSAGE)

    async def _cmd_cancel(self, chat_id, args, session, now) -> OutboundMessage:
        return self._cancel(chat_id, session)

    async def _cmd_register(self, chat_id, args, session, now) -> OutboundMessage:
        if self._logged_in.is_logged_in(chat_id):
            return self._reply(chat_id, ALREADY_LOGGED_IN)
        new_session, reply = self._registration_manager.start(chat_id, now)
        self._sessions.save_session(chat_id, new_session)
        return self._reply(chat_id, reply)

    async def _cmd_login(self, chat_id, args, session, now) -> OutboundMessage:
        if self._logged_in.is_logged_in(chat_id):
            return self._reply(chat_id, ALREADY_LOGGED_IN)
        new_session, reply = self._login_manager.start(chat_id, now)
        self._sessions.save_session(chat_id, new_session)
        return self._reply(chat_id, reply)

    async def _cmd_logout(self, chat_id, args, session, now) -> OutboundMessage:
        if self._logged_in.logout(chat_id):
            logger.info(f"Logout: chat_id={chat_id}")
            return self._reply(chat_id, "Você saiu da sua conta. Até logo!")
        return self._reply(chat_id, "Você não está logado.")

    async def _cmd_sites(self, chat_id, args, session, now) -> OutboundMessage:
        if not self._can_browse(chat_id):
            return self._reply(chat_id, LOGIN_REQUIRED)
        sites = await self._repo(lambda repo: repo.list_sites())
        if not sites:
            return self._reply(chat_id, "Nenhum site cadastrado ainda.")
        keyboard = [[KeyboardButton(site.name, f"/editais {site.id}")] for site in sites]
        return self._reply(chat_id, "Escolha um site para busca:", keyboard=keyboard)

    @staticmethod
    def _parse_site_id(args: str) -> Optional[int]:
        return int(args) if args.isdigit() else None

    async def _cmd_notices(self, chat_id, args, session, now) -> OutboundMessage:
        if not self._can_browse(chat_id):
            return self._reply(chat_id, LOGIN_REQUIRED)
        site_id = self._parse_site_id(args)
        if site_id is None:
            return self._reply(chat_id, "Uso: /editais <id do site>. Veja os ids em /sites.")
        site = await self._repo(lambda repo: repo.get_site(site_id))
        if site is None:
            return self._reply(chat_id, "Site não encontrado.")

        notices = await asyncio.to_thread(self._notice_fetcher.fetch, site.url, site.selector)
        text = f"*{escape_markdown(site.name)}*\n\n{format_notices_message(notices)}"
        return self._reply(chat_id, text, parse_mode="Markdown")

    async def _cmd_subscribe(self, chat_id, args, session, now) -> OutboundMessage:
        user_id = self._logged_in.user_id_for(chat_id)
        if user_id is None:
            return self._reply(chat_id, LOGIN_REQUIRED)
        site_id = self._parse_site_id(args)
        if site_id is None:
            return self._reply(chat_id, "Uso: /assinar <id do site>. Veja os ids em /sites.")
        site = await self._repo(lambda repo: repo.get_site(site_id))
        if site is None:
            return self._reply(chat_id, "Site não encontrado.")
        created = await self._repo(lambda repo: repo.link_user_to_site(user_id, site_id))
        if created:
            return self._reply(chat_id, f'✅ Você assinou o site "{site.name}".')
        return self._reply(chat_id, f'Você já assina o site "{site.name}".')

    async def _cmd_my_sites(self, chat_id, args, session, now) -> OutboundMessage:
        user_id = self._logged_in.user_id_for(chat_id)
        if user_id is None:
            return self._reply(chat_id, LOGIN_REQUIRED)
        sites = await self._repo(lambda repo: repo.list_user_sites(user_id))
        if not sites:
            return self._reply(chat_id, "Você ainda não assinou nenhum site. Use /sites para escolher.")
        lines = [f"{site.id} – {site.name}" for site in sites]
        return self._reply(chat_id, "Seus sites:\n" + "\n".join(lines))

    async def _cmd_add_site(self, chat_id, args, session, now) -> OutboundMessage:
        # Para os demais chats o comando não existe
        if not self._is_admin(chat_id):
            return self._reply(chat_id, UNKNOWN_COMMAND)
        if "|" not in args:
            return self._reply(chat_id, ADD_SITE_USAGE)

        parts = [part.strip() for part in args.split("|")]
        name, url = parts[0], parts[1]
        selector = parts[2] if len(parts) > 2 and parts[2] else None
        if not name or not url.lower().startswith(("http://", "https://")) or len(parts) > 3:
            return self._reply(chat_id, ADD_SITE_USAGE)

        try:
            site = await self._repo(lambda repo: repo.create_site(name, url, selector))
        except DuplicateSiteError:
            return self._reply(chat_id, f"Esse site já está cadastrado: {url}")
        return self._reply(chat_id, f'✅ Site "{site.name}" adicionado com sucesso (id {site.id}).')

    def sweep_expired(self) -> List[str]:
        """
        Remove sessões inativas. Chats com evento em andamento ficam
        para a próxima varredura. Avisos de expiração não entregues em
        EXPIRED_NOTICE_RETENTION_SECONDS são esquecidos.
        """
        now = self._clock()
        stale = [
            chat_id for chat_id, expired_at in self._expired_chats.items()
            if now - expired_at > EXPIRED_NOTICE_RETENTION_SECONDS
        ]
        for chat_id in stale:
            del self._expired_chats[chat_id]

        evicted = []
        for chat_id in self._sessions.expired_ids(now, self._config.session_idle_timeout_seconds):
            if self._locks.is_busy(chat_id):
                continue
            self._sessions.clear_session(chat_id)
            self._expired_chats[chat_id] = now
            evicted.append(chat_id)
        if evicted:
            logger.info(f"Varredura de sessões: removidas={len(evicted)}, avisos_pendentes={len(self._expired_chats)}")
        return evicted

    async def run_sweeper(self) -> None:
        interval = self._config.session_sweep_interval_seconds
        logger.info(f"Varredura de sessões iniciada: interval={interval}s")
        while True:
            await asyncio.sleep(interval)
            try:
                self.sweep_expired()
            except Exception as e:
                logger.error(f"Erro na varredura de sessões: error={type(e).__name__}: {e}", exc_info=True)

    def get_session_status(self, chat_id: str) -> Dict[str, Any]:
        """
        Estado atual de um chat, sem processar mensagem.
        """
        session = self._sessions.get_session(chat_id)
        return {
            "chat_id": chat_id,
            "active": session is not None,
            "flow": session.flow.value if session else None,
            "step": session.step.value if session else None,
            "last_activity_at": session.last_activity_at if session else None,
            "logged_in": self._logged_in.is_logged_in(chat_id),
        }
