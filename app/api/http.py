import asyncio
import logging
import time
from contextlib import asynccontextmanager
from uuid import uuid4
from fastapi import FastAPI, HTTPException, Header, Request
from starlette.middleware.base import BaseHTTPMiddleware
from typing import Optional, List
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from ..config import AppConfig
from ..core.engine import ChatbotEngine
from ..core.models import ChatEvent, OutboundMessage

logger = logging.getLogger(__name__)


class ChatRequest(BaseModel):
    chat_id: str
    message: str


class PhotoRequest(BaseModel):
    chat_id: str
    file_id: str


class CallbackRequest(BaseModel):
    chat_id: str
    data: str


class ButtonModel(BaseModel):
    text: str
    callback_data: str


class ChatResponse(BaseModel):
    chat_id: str
    reply: str
    parse_mode: Optional[str] = None
    keyboard: List[List[ButtonModel]] = []


class SessionStatusResponse(BaseModel):
    chat_id: str
    active: bool
    flow: Optional[str] = None
    step: Optional[str] = None
    last_activity_at: Optional[float] = None
    logged_in: bool


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Middleware que gera request_id único para cada requisição
    e adiciona aos logs e headers de resposta.
    """

    async def dispatch(self, request: Request, call_next):
        request_id = uuid4().hex[:16]
        request.state.request_id = request_id

        start_time = time.time()
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id

        duration_ms = (time.time() - start_time) * 1000
        logger.info(
            f"Request processado: request_id={request_id}, "
            f"method={request.method}, path={request.url.path}, "
            f"status={response.status_code}, duration_ms={duration_ms:.2f}"
        )
        return response


def require_api_key(config: AppConfig, x_api_key: Optional[str]) -> None:
    """
    Valida API key baseado no ambiente.

    Em produção (ENV=prod), sempre exige API key.
    Em desenvolvimento (ENV=dev), só exige se BOT_API_KEY estiver configurada.
    """
    expected_key = config.bot_api_key or ""

    if config.env == "prod":
        if not x_api_key or x_api_key != expected_key:
            logger.warning("Tentativa de acesso não autorizado em PRODUÇÃO")
            raise HTTPException(status_code=401, detail="Invalid API key")
    else:
        if expected_key and expected_key.strip():
            if x_api_key != expected_key:
                logger.warning("Tentativa de acesso não autorizado em DEV")
                raise HTTPException(status_code=401, detail="Invalid API key")
        else:
            logger.debug("BOT_API_KEY não configurada, aceitando requisição sem autenticação (modo desenvolvimento)")


def to_response(message: OutboundMessage) -> ChatResponse:
    return ChatResponse(
        chat_id=message.chat_id,
        reply=message.text,
        parse_mode=message.parse_mode,
        keyboard=[
            [ButtonModel(text=b.text, callback_data=b.callback_data) for b in row]
            for row in message.keyboard
        ],
    )


def create_app(config: Optional[AppConfig] = None, engine: Optional[ChatbotEngine] = None) -> FastAPI:
    """
    Cria a aplicação FastAPI e injeta dependências principais (config + engine).
    """
    config = config or AppConfig.load_from_env()
    engine = engine or ChatbotEngine.from_config(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        sweeper = asyncio.create_task(engine.run_sweeper())
        try:
            yield
        finally:
            sweeper.cancel()
            logger.info("Varredura de sessões encerrada")

    app = FastAPI(
        title="Editais Bot API",
        version="0.1.0",
        description="API do bot de cadastro, login e editais de leilões.",
        lifespan=lifespan,
    )
    app.add_middleware(RequestIDMiddleware)

    async def process(event: ChatEvent, request: Request, x_api_key: Optional[str]) -> ChatResponse:
        request_id = getattr(request.state, "request_id", "unknown")
        require_api_key(config, x_api_key)
        logger.info(
            f"Evento recebido: request_id={request_id}, chat_id={event.chat_id}, kind={event.kind.value}"
        )

        # handle_event nunca levanta: falhas viram resposta ao usuário
        start_time = time.time()
        message = await engine.handle_event(event)

        duration_ms = (time.time() - start_time) * 1000
        logger.info(
            f"Resposta gerada: request_id={request_id}, chat_id={event.chat_id}, "
            f"duration_ms={duration_ms:.2f}"
        )
        return to_response(message)

    @app.get("/health")
    def health_check():
        """
        Endpoint de health check para monitoramento e Docker healthchecks.
        """
        db_ok = True
        try:
            with engine.db_session_factory() as db:
                db.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            logger.warning(f"Database health check falhou: {e}")
            db_ok = False

        return {
            "status": "healthy" if db_ok else "degraded",
            "database": "ok" if db_ok else "error",
            "sessions": engine.session_backend,
            "transport": config.transport,
        }

    @app.post("/chat", response_model=ChatResponse)
    async def chat_endpoint(
        payload: ChatRequest,
        request: Request,
        x_api_key: Optional[str] = Header(default=None, alias="X-API-KEY"),
    ) -> ChatResponse:
        return await process(ChatEvent.text_message(payload.chat_id, payload.message), request, x_api_key)

    @app.post("/chat/photo", response_model=ChatResponse)
    async def photo_endpoint(
        payload: PhotoRequest,
        request: Request,
        x_api_key: Optional[str] = Header(default=None, alias="X-API-KEY"),
    ) -> ChatResponse:
        return await process(ChatEvent.photo(payload.chat_id, payload.file_id), request, x_api_key)

    @app.post("/chat/callback", response_model=ChatResponse)
    async def callback_endpoint(
        payload: CallbackRequest,
        request: Request,
        x_api_key: Optional[str] = Header(default=None, alias="X-API-KEY"),
    ) -> ChatResponse:
        return await process(ChatEvent.callback(payload.chat_id, payload.data), request, x_api_key)

    @app.get("/session/{chat_id}", response_model=SessionStatusResponse)
    def get_session(
        chat_id: str,
        x_api_key: Optional[str] = Header(default=None, alias="X-API-KEY"),
    ) -> SessionStatusResponse:
        """
        Estado da sessão de um chat (fluxo e etapa), sem processar mensagem.
        Os dados coletados não são expostos.
        """
        require_api_key(config, x_api_key)
        return SessionStatusResponse(**engine.get_session_status(chat_id))

    return app
