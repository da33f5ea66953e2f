import asyncio
import json

import pytest

from app.core.locks import ChatLocks
from app.core.login_state import LoginStep
from app.core.registration_state import RegistrationStep, RegistrationData, is_valid_transition
from app.core.session_manager import (
    Flow,
    InMemorySessionManager,
    LoggedInUsers,
    LoginSession,
    RegistrationSession,
    session_from_dict,
    session_to_dict,
)
from app.session.redis_session_manager import RedisSessionManager


class FakeRedis:
    """
    Subconjunto da API do redis-py usado pelo RedisSessionManager.
    """

    def __init__(self) -> None:
        self.store = {}
        self.ttls = {}

    def ping(self):
        return True

    def get(self, key):
        return self.store.get(key)

    def setex(self, key, ttl, value):
        self.store[key] = value
        self.ttls[key] = ttl

    def delete(self, key):
        self.store.pop(key, None)

    def scan_iter(self, match=None):
        prefix = match.rstrip("*") if match else ""
        return [key.encode("utf-8") for key in list(self.store) if key.startswith(prefix)]


@pytest.mark.nivel("baixo")
def test_in_memory_get_save_clear():
    sessions = InMemorySessionManager()
    session = RegistrationSession(chat_id="1", last_activity_at=100.0)

    assert sessions.get_session("1") is None
    sessions.save_session("1", session)
    assert sessions.get_session("1") is session
    assert len(sessions) == 1

    sessions.clear_session("1")
    assert sessions.get_session("1") is None
    # Remover de novo não falha
    sessions.clear_session("1")


@pytest.mark.nivel("baixo")
def test_sweep_evicts_only_idle_sessions():
    sessions = InMemorySessionManager()
    sessions.save_session("old", RegistrationSession(chat_id="old", last_activity_at=0.0))
    sessions.save_session("new", LoginSession(chat_id="new", last_activity_at=950.0))

    assert sessions.expired_ids(now=1000.0, idle_seconds=900) == ["old"]
    assert sessions.sweep(now=1000.0, idle_seconds=900) == ["old"]
    assert sessions.get_session("old") is None
    assert sessions.get_session("new") is not None


@pytest.mark.nivel("baixo")
def test_session_dict_keeps_flow_and_data():
    session = RegistrationSession(chat_id="7", step=RegistrationStep.ASKING_CPF, last_activity_at=5.0, code_attempts=2)
    session.data.full_name = "Ana Silva"
    session.data.email_verified = True

    restored = session_from_dict(json.loads(json.dumps(session_to_dict(session))))

    assert isinstance(restored, RegistrationSession)
    assert restored.flow == Flow.REGISTRATION
    assert restored.step == RegistrationStep.ASKING_CPF
    assert restored.data.full_name == "Ana Silva"
    assert restored.data.email_verified is True
    assert restored.code_attempts == 2

    login = session_from_dict(session_to_dict(LoginSession(chat_id="8", step=LoginStep.ASKING_PASSWORD, email="a@b.co")))
    assert isinstance(login, LoginSession)
    assert login.email == "a@b.co"


@pytest.mark.nivel("baixo")
def test_session_from_dict_rejects_unknown_step():
    with pytest.raises(ValueError):
        session_from_dict({"flow": "registration", "chat_id": "1", "step": "asking_phone"})
    with pytest.raises(ValueError):
        session_from_dict({"flow": "public", "chat_id": "1", "step": "asking_name"})


@pytest.mark.nivel("baixo")
def test_registration_and_login_steps_are_disjoint():
    assert not {s.value for s in RegistrationStep} & {s.value for s in LoginStep}


@pytest.mark.nivel("baixo")
def test_transition_graph():
    assert is_valid_transition(RegistrationStep.ASKING_NAME, RegistrationStep.ASKING_EMAIL)
    assert is_valid_transition(RegistrationStep.CONFIRMING_PASSWORD, RegistrationStep.ASKING_PASSWORD)
    assert not is_valid_transition(RegistrationStep.ASKING_NAME, RegistrationStep.ASKING_CPF)


@pytest.mark.nivel("baixo")
def test_missing_fields_requires_cnpj_pair():
    data = RegistrationData(
        full_name="Ana Silva",
        email="ana@x.com",
        email_verified=True,
        cpf="52998224725",
        primary_address="Rua A, 123",
        document_file_id="d",
        residence_proof_file_id="r",
        password_hash="hash",
    )
    assert data.missing_fields() == []

    data.cnpj = "11222333000181"
    assert data.missing_fields() == ["secondary_address"]


@pytest.mark.nivel("baixo")
def test_logged_in_users():
    users = LoggedInUsers()
    users.login("1", 10)
    assert users.is_logged_in("1")
    assert users.user_id_for("1") == 10
    assert users.logout("1") is True
    assert users.logout("1") is False


@pytest.mark.nivel("baixo")
def test_redis_manager_round_trip_with_ttl():
    client = FakeRedis()
    sessions = RedisSessionManager(session_ttl_seconds=900, client=client)
    session = RegistrationSession(chat_id="1", step=RegistrationStep.ASKING_EMAIL, last_activity_at=10.0)
    session.data.full_name = "Ana Silva"

    sessions.save_session("1", session)
    assert client.ttls["session:1"] == 900

    restored = sessions.get_session("1")
    assert restored.step == RegistrationStep.ASKING_EMAIL
    assert restored.data.full_name == "Ana Silva"

    assert sessions.sweep(now=2000.0, idle_seconds=900) == ["1"]
    assert sessions.get_session("1") is None


@pytest.mark.nivel("baixo")
def test_redis_manager_drops_corrupted_session():
    client = FakeRedis()
    client.store["session:9"] = json.dumps({"flow": "registration", "chat_id": "9", "step": "velha"}).encode()
    sessions = RedisSessionManager(client=client)

    assert sessions.get_session("9") is None
    assert "session:9" not in client.store


@pytest.mark.nivel("baixo")
def test_chat_locks_track_busy_chats():
    locks = ChatLocks()

    async def scenario():
        async with locks.hold("1"):
            assert locks.is_busy("1")
            assert not locks.is_busy("2")
        assert not locks.is_busy("1")
        assert len(locks) == 0

    asyncio.run(scenario())


@pytest.mark.nivel("baixo")
def test_registration_data_serializes_only_password_hash():
    data = RegistrationData(full_name="Ana Silva", password_hash="$2b$04$hash")

    raw = data.to_dict()

    assert "password" not in raw
    assert raw["password_hash"] == "$2b$04$hash"
    # Sessões antigas com senha em texto puro são lidas sem ela
    restored = RegistrationData.from_dict({"full_name": "Ana Silva", "password": "abcdef"})
    assert not hasattr(restored, "password")
