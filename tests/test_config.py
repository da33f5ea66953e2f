import pytest

from app.config import AppConfig

ENV_KEYS = [
    "DATABASE_URL", "REDIS_URL", "SMTP_HOST", "SMTP_PORT", "SMTP_USER", "SMTP_PASSWORD", "SMTP_FROM",
    "BOT_API_KEY", "TELEGRAM_TOKEN", "ADMIN_CHAT_ID", "ENV", "BOT_TRANSPORT", "TAX_ID_VALIDATION",
    "BCRYPT_ROUNDS", "PASSWORD_MIN_LENGTH", "CODE_MAX_ATTEMPTS", "SESSION_IDLE_TIMEOUT_SECONDS",
    "SESSION_SWEEP_INTERVAL_SECONDS", "NOTICE_FETCH_TIMEOUT_SECONDS", "NOTICE_MAX_RESULTS", "NOTICE_USER_AGENT",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


@pytest.mark.nivel("baixo")
def test_defaults():
    config = AppConfig.load_from_env()

    assert config == AppConfig()
    assert config.strict_tax_id is True
    assert config.session_idle_timeout_seconds == 900
    assert config.code_max_attempts == 5


@pytest.mark.nivel("baixo")
def test_values_from_environment(monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "postgresql://u:p@db/editais")
    monkeypatch.setenv("TAX_ID_VALIDATION", "FORMAT")
    monkeypatch.setenv("CODE_MAX_ATTEMPTS", "0")
    monkeypatch.setenv("SESSION_IDLE_TIMEOUT_SECONDS", "60")
    monkeypatch.setenv("ADMIN_CHAT_ID", " 999 ")
    monkeypatch.setenv("NOTICE_MAX_RESULTS", "10")

    config = AppConfig.load_from_env()

    assert config.database_url == "postgresql://u:p@db/editais"
    assert config.strict_tax_id is False
    assert config.code_max_attempts == 0
    assert config.session_idle_timeout_seconds == 60
    assert config.admin_chat_id == "999"
    assert config.notice_max_results == 10


@pytest.mark.nivel("baixo")
def test_invalid_tax_id_policy_is_an_error(monkeypatch):
    monkeypatch.setenv("TAX_ID_VALIDATION", "lenient")

    with pytest.raises(RuntimeError):
        AppConfig.load_from_env()


@pytest.mark.nivel("baixo")
def test_prod_requires_api_key(monkeypatch):
    monkeypatch.setenv("ENV", "prod")

    with pytest.raises(RuntimeError):
        AppConfig.load_from_env()

    monkeypatch.setenv("BOT_API_KEY", "chave")
    assert AppConfig.load_from_env().env == "prod"


@pytest.mark.nivel("baixo")
def test_prod_rejects_weak_bcrypt(monkeypatch):
    monkeypatch.setenv("ENV", "prod")
    monkeypatch.setenv("BOT_API_KEY", "chave")
    monkeypatch.setenv("BCRYPT_ROUNDS", "4")

    with pytest.raises(RuntimeError):
        AppConfig.load_from_env()


@pytest.mark.nivel("baixo")
def test_telegram_transport_requires_token(monkeypatch):
    monkeypatch.setenv("BOT_TRANSPORT", "telegram")

    with pytest.raises(RuntimeError):
        AppConfig.load_from_env()

    monkeypatch.setenv("TELEGRAM_TOKEN", "123:abc")
    assert AppConfig.load_from_env().transport == "telegram"


@pytest.mark.nivel("baixo")
def test_unknown_env_and_transport_fall_back(monkeypatch):
    monkeypatch.setenv("ENV", "staging")
    monkeypatch.setenv("BOT_TRANSPORT", "whatsapp")

    config = AppConfig.load_from_env()

    assert config.env == "dev"
    assert config.transport == "http"
