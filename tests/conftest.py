import asyncio
from typing import List, Optional

import pytest

from app.config import AppConfig
from app.core.engine import ChatbotEngine
from app.core.exceptions import EmailDeliveryError
from app.core.models import ChatEvent, OutboundMessage
from app.core.passwords import hash_password
from app.domain.notices import Notice
from app.infra.chat_sender import ChatSender
from app.storage.database import create_session_factory
from app.storage.repository import with_repository

VALID_CPF = "52998224725"
VALID_CNPJ = "11222333000181"
ADMIN_CHAT_ID = "admin-1"


class FakeEmailService:
    """
    Guarda os códigos enviados em vez de mandar e-mail.
    """

    def __init__(self) -> None:
        self.sent = []
        self.fail = False

    def send_verification_code(self, to_email: str, code: str) -> None:
        if self.fail:
            raise EmailDeliveryError("SMTP fora do ar")
        self.sent.append((to_email, code))

    @property
    def last_code(self) -> Optional[str]:
        return self.sent[-1][1] if self.sent else None


class RecordingSender(ChatSender):
    def __init__(self) -> None:
        self.sent: List[OutboundMessage] = []

    async def send(self, message: OutboundMessage) -> None:
        self.sent.append(message)


class FakeClock:
    def __init__(self, now: float = 1_000_000.0) -> None:
        self.now = now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def __call__(self) -> float:
        return self.now


class FakeNoticeFetcher:
    def __init__(self) -> None:
        self.notices: List[Notice] = []
        self.calls = []

    def fetch(self, url: str, selector: Optional[str] = None) -> List[Notice]:
        self.calls.append((url, selector))
        return list(self.notices)


class Conversation:
    """
    Envia eventos ao engine como se fosse o transporte.
    """

    def __init__(self, engine: ChatbotEngine) -> None:
        self.engine = engine

    def event(self, event: ChatEvent) -> OutboundMessage:
        return asyncio.run(self.engine.handle_event(event))

    def say(self, chat_id: str, text: str) -> str:
        return self.event(ChatEvent.text_message(chat_id, text)).text

    def photo(self, chat_id: str, file_id: str) -> str:
        return self.event(ChatEvent.photo(chat_id, file_id)).text

    def click(self, chat_id: str, data: str) -> OutboundMessage:
        return self.event(ChatEvent.callback(chat_id, data))


@pytest.fixture
def config() -> AppConfig:
    return AppConfig(
        database_url="sqlite://",
        admin_chat_id=ADMIN_CHAT_ID,
        bcrypt_rounds=4,
        code_max_attempts=3,
    )


@pytest.fixture
def db_session_factory():
    return create_session_factory("sqlite://", create_tables=True)


@pytest.fixture
def email_service() -> FakeEmailService:
    return FakeEmailService()


@pytest.fixture
def sender() -> RecordingSender:
    return RecordingSender()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def notice_fetcher() -> FakeNoticeFetcher:
    return FakeNoticeFetcher()


@pytest.fixture
def engine(config, db_session_factory, email_service, sender, clock, notice_fetcher) -> ChatbotEngine:
    return ChatbotEngine(
        config=config,
        db_session_factory=db_session_factory,
        email_service=email_service,
        sender=sender,
        notice_fetcher=notice_fetcher,
        clock=clock,
    )


@pytest.fixture
def chat(engine) -> Conversation:
    return Conversation(engine)


@pytest.fixture
def create_user(db_session_factory):
    """
    Cria um usuário direto no banco, com senha já em hash.
    """

    def _create(email: str = "bia@x.com", password: str = "segredo1", full_name: str = "Bia Souza"):
        return with_repository(
            db_session_factory,
            lambda repo: repo.create_user(
                full_name=full_name,
                email=email,
                cpf=VALID_CPF,
                primary_address="Rua das Flores, 10",
                document_file_id="doc-1",
                residence_proof_file_id="res-1",
                password_hash=hash_password(password, rounds=4),
            ),
        )

    return _create


# Níveis de execução: testes mais simples rodam primeiro
niveis_execucao = ["baixo", "medio", "alto"]


def pytest_configure(config):
    config.addinivalue_line("markers", "nivel(n): marca o teste com um nível: baixo, medio ou alto")


def get_nivel(item):
    marca = item.get_closest_marker("nivel")
    return marca.args[0] if marca else "baixo"


def pytest_collection_modifyitems(session, config, items):
    items.sort(key=lambda item: niveis_execucao.index(get_nivel(item)))
