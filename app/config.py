from dataclasses import dataclass
import os
import logging
from dotenv import load_dotenv

logger = logging.getLogger(__name__)


TAX_ID_POLICIES = ("strict", "format")
TRANSPORTS = ("http", "telegram")


@dataclass(frozen=True)
class AppConfig:
    """
    Configurações principais da aplicação.

    Segue a ideia de centralizar parâmetros críticos
    para facilitar revisão, testes e mudanças futuras.
    """
    database_url: str = "sqlite:///./editais.db"
    redis_url: str = ""
    smtp_host: str = "dev-log"
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_from: str = "cadastro@editais-bot.com.br"
    bot_api_key: str = ""
    env: str = "dev"  # "dev" ou "prod"
    transport: str = "http"  # "http" ou "telegram"
    telegram_token: str = ""
    admin_chat_id: str = ""  # único chat com permissão de cadastrar sites
    tax_id_validation: str = "strict"  # "strict" (dígitos verificadores) ou "format" (só tamanho)
    password_min_length: int = 6
    bcrypt_rounds: int = 12
    code_max_attempts: int = 5  # 0 = sem limite
    session_idle_timeout_seconds: int = 15 * 60
    session_sweep_interval_seconds: int = 5 * 60
    notice_fetch_timeout_seconds: float = 10.0
    notice_max_results: int = 5
    notice_user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
    )

    @property
    def strict_tax_id(self) -> bool:
        return self.tax_id_validation == "strict"

    @classmethod
    def load_from_env(cls) -> "AppConfig":
        """
        Carrega configuração a partir de variáveis de ambiente.
        Primeiro tenta carregar do arquivo .env, depois do ambiente do sistema.
        Levanta erro explícito se algo crítico faltar.
        """
        # Carrega variáveis do arquivo .env se existir
        load_dotenv()

        database_url = os.getenv("DATABASE_URL", "sqlite:///./editais.db")
        redis_url = os.getenv("REDIS_URL", "")
        smtp_host = os.getenv("SMTP_HOST", "dev-log")
        smtp_port = int(os.getenv("SMTP_PORT", "587"))
        smtp_user = os.getenv("SMTP_USER", "")
        smtp_password = os.getenv("SMTP_PASSWORD", "")
        smtp_from = os.getenv("SMTP_FROM", "cadastro@editais-bot.com.br")
        bot_api_key = os.getenv("BOT_API_KEY", "")
        telegram_token = os.getenv("TELEGRAM_TOKEN", "")
        admin_chat_id = os.getenv("ADMIN_CHAT_ID", "").strip()

        # Carregar ambiente (dev ou prod)
        env = os.getenv("ENV", "dev").lower()
        if env not in ("dev", "prod"):
            logger.warning(f"ENV inválido '{env}', usando 'dev' como padrão")
            env = "dev"

        # Validação: em produção, BOT_API_KEY é obrigatório
        if env == "prod":
            if not bot_api_key or not bot_api_key.strip():
                raise RuntimeError(
                    "ENV=prod requer BOT_API_KEY definida. "
                    "Configure BOT_API_KEY no ambiente de produção."
                )
            logger.info("Modo PRODUÇÃO: BOT_API_KEY validada")
        else:
            if not bot_api_key or not bot_api_key.strip():
                logger.warning(
                    "⚠️  MODO DEV: BOT_API_KEY não configurada. "
                    "Endpoints /chat aceitarão requisições sem autenticação. "
                    "Configure BOT_API_KEY para produção."
                )

        transport = os.getenv("BOT_TRANSPORT", "http").lower()
        if transport not in TRANSPORTS:
            logger.warning(f"BOT_TRANSPORT inválido '{transport}', usando 'http' como padrão")
            transport = "http"
        if transport == "telegram" and not telegram_token:
            raise RuntimeError("BOT_TRANSPORT=telegram requer TELEGRAM_TOKEN definido.")

        if not admin_chat_id:
            logger.warning("ADMIN_CHAT_ID não configurado: cadastro de sites desabilitado")

        tax_id_validation = os.getenv("TAX_ID_VALIDATION", "strict").lower()
        if tax_id_validation not in TAX_ID_POLICIES:
            raise RuntimeError(
                f"TAX_ID_VALIDATION inválido '{tax_id_validation}'. "
                f"Valores aceitos: {', '.join(TAX_ID_POLICIES)}"
            )
        logger.info(f"Validação de CPF/CNPJ: modo={tax_id_validation}")

        bcrypt_rounds = int(os.getenv("BCRYPT_ROUNDS", "12"))
        if env == "prod" and bcrypt_rounds < 10:
            raise RuntimeError("BCRYPT_ROUNDS deve ser pelo menos 10 em produção.")

        # Carregar configurações de sessão e busca de editais
        password_min_length = int(os.getenv("PASSWORD_MIN_LENGTH", "6"))
        code_max_attempts = int(os.getenv("CODE_MAX_ATTEMPTS", "5"))
        session_idle_timeout_seconds = int(os.getenv("SESSION_IDLE_TIMEOUT_SECONDS", str(15 * 60)))
        session_sweep_interval_seconds = int(os.getenv("SESSION_SWEEP_INTERVAL_SECONDS", str(5 * 60)))
        notice_fetch_timeout_seconds = float(os.getenv("NOTICE_FETCH_TIMEOUT_SECONDS", "10"))
        notice_max_results = int(os.getenv("NOTICE_MAX_RESULTS", "5"))
        notice_user_agent = os.getenv("NOTICE_USER_AGENT", cls.notice_user_agent)

        return cls(
            database_url=database_url,
            redis_url=redis_url,
            smtp_host=smtp_host,
            smtp_port=smtp_port,
            smtp_user=smtp_user,
            smtp_password=smtp_password,
            smtp_from=smtp_from,
            bot_api_key=bot_api_key,
            env=env,
            transport=transport,
            telegram_token=telegram_token,
            admin_chat_id=admin_chat_id,
            tax_id_validation=tax_id_validation,
            password_min_length=password_min_length,
            bcrypt_rounds=bcrypt_rounds,
            code_max_attempts=code_max_attempts,
            session_idle_timeout_seconds=session_idle_timeout_seconds,
            session_sweep_interval_seconds=session_sweep_interval_seconds,
            notice_fetch_timeout_seconds=notice_fetch_timeout_seconds,
            notice_max_results=notice_max_results,
            notice_user_agent=notice_user_agent,
        )
