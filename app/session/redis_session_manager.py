"""
Gerenciador de sessões usando Redis como backend.
Armazena a sessão de cadastro/login serializada em JSON com TTL
igual ao tempo máximo de inatividade.
"""
import logging
import json
from typing import List, Optional
from redis import Redis
from redis.exceptions import RedisError
from ..core.session_manager import Session, session_to_dict, session_from_dict, is_expired

logger = logging.getLogger(__name__)

KEY_PREFIX = "session:"


class RedisSessionManager:
    """
    Gerenciador de sessões usando Redis.

    Armazena cada sessão em uma chave: session:{chat_id}
    O TTL é renovado a cada gravação, então o próprio Redis
    descarta sessões abandonadas mesmo sem a varredura.
    """

    def __init__(
        self,
        redis_url: Optional[str] = None,
        session_ttl_seconds: int = 900,
        client: Optional[Redis] = None,
    ) -> None:
        """
        Inicializa o gerenciador de sessões Redis.

        Args:
            redis_url: URL de conexão Redis (ex: redis://localhost:6379/0)
            session_ttl_seconds: TTL em segundos para expiração de sessões
            client: cliente já construído (usado em testes)
        """
        self._redis = client if client is not None else Redis.from_url(redis_url, decode_responses=False)
        self._session_ttl_seconds = session_ttl_seconds

        # Testar conexão
        try:
            self._redis.ping()
            logger.info(f"RedisSessionManager inicializado: ttl={session_ttl_seconds}s")
        except RedisError as e:
            logger.error(f"Erro ao conectar ao Redis: {e}")
            raise

    @staticmethod
    def _key(chat_id: str) -> str:
        return f"{KEY_PREFIX}{chat_id}"

    def _serialize_state(self, session: Session) -> bytes:
        return json.dumps(session_to_dict(session), ensure_ascii=False).encode("utf-8")

    def _deserialize_state(self, data: bytes) -> Session:
        return session_from_dict(json.loads(data.decode("utf-8")))

    def get_session(self, chat_id: str) -> Optional[Session]:
        try:
            data = self._redis.get(self._key(chat_id))
        except RedisError as e:
            logger.error(f"Erro ao recuperar sessão do Redis: chat_id={chat_id}, error={e}")
            return None
        if not data:
            return None
        try:
            return self._deserialize_state(data)
        except (ValueError, KeyError) as e:
            # Sessão ilegível: descartar para o usuário recomeçar
            logger.error(f"Sessão corrompida no Redis: chat_id={chat_id}, error={type(e).__name__}: {e}")
            self.clear_session(chat_id)
            return None

    def save_session(self, chat_id: str, session: Session) -> None:
        try:
            self._redis.setex(self._key(chat_id), self._session_ttl_seconds, self._serialize_state(session))
            logger.debug(
                f"Sessão salva no Redis: chat_id={chat_id}, step={session.step.value}, "
                f"ttl={self._session_ttl_seconds}s"
            )
        except RedisError as e:
            logger.error(f"Erro ao salvar sessão no Redis: chat_id={chat_id}, error={e}")

    def clear_session(self, chat_id: str) -> None:
        try:
            self._redis.delete(self._key(chat_id))
            logger.debug(f"Sessão removida do Redis: chat_id={chat_id}")
        except RedisError as e:
            logger.error(f"Erro ao remover sessão do Redis: chat_id={chat_id}, error={e}")

    def _iter_sessions(self):
        for key in self._redis.scan_iter(match=f"{KEY_PREFIX}*"):
            raw_key = key.decode("utf-8") if isinstance(key, bytes) else key
            chat_id = raw_key[len(KEY_PREFIX):]
            session = self.get_session(chat_id)
            if session is not None:
                yield chat_id, session

    def expired_ids(self, now: float, idle_seconds: float) -> List[str]:
        try:
            return [
                chat_id for chat_id, session in self._iter_sessions()
                if is_expired(session, now, idle_seconds)
            ]
        except RedisError as e:
            logger.error(f"Erro ao varrer sessões no Redis: error={e}")
            return []

    def sweep(self, now: float, idle_seconds: float) -> List[str]:
        evicted = self.expired_ids(now, idle_seconds)
        for chat_id in evicted:
            self.clear_session(chat_id)
        if evicted:
            logger.info(f"Sessões expiradas removidas do Redis: total={len(evicted)}")
        return evicted
