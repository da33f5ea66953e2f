import logging
from typing import Callable, List, Optional, TypeVar
from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from .models import User, AuctionSite, UserSite
from ..core.exceptions import StorageError, DuplicateEmailError, DuplicateSiteError
from ..core.normalizers import mask_email

logger = logging.getLogger(__name__)

T = TypeVar("T")


class AuctionRepository:
    """
    Repositório para usuários, sites de leiloeiros e assinaturas.

    Erros do SQLAlchemy são convertidos para a hierarquia da aplicação
    (StorageError e derivados), com rollback da sessão.
    """

    def __init__(self, db: Session) -> None:
        self._db = db

    def create_user(
        self,
        full_name: str,
        email: str,
        cpf: str,
        primary_address: str,
        document_file_id: str,
        residence_proof_file_id: str,
        password_hash: str,
        cnpj: Optional[str] = None,
        secondary_address: Optional[str] = None,
        chat_id: Optional[str] = None,
    ) -> User:
        """
        Cria um novo usuário no banco de dados.
        """
        logger.debug(f"Criando usuário: email={mask_email(email)}, chat_id={chat_id}, has_cnpj={bool(cnpj)}")

        try:
            user = User(
                full_name=full_name,
                email=email,
                cpf=cpf,
                cnpj=cnpj,
                primary_address=primary_address,
                secondary_address=secondary_address,
                document_file_id=document_file_id,
                residence_proof_file_id=residence_proof_file_id,
                password_hash=password_hash,
                chat_id=chat_id,
            )
            self._db.add(user)
            self._db.commit()
            self._db.refresh(user)

            logger.info(f"Usuário criado com sucesso: id={user.id}, email={mask_email(email)}")
            return user
        except IntegrityError as e:
            logger.warning(
                f"Erro de integridade ao criar usuário: email={mask_email(email)}, "
                f"error={type(e).__name__}"
            )
            self._db.rollback()
            raise DuplicateEmailError(email) from e
        except SQLAlchemyError as e:
            logger.error(
                f"Erro de banco de dados ao criar usuário: email={mask_email(email)}, "
                f"error={type(e).__name__}: {e}",
                exc_info=True,
            )
            self._db.rollback()
            raise StorageError() from e

    def find_user_by_email(self, email: str) -> Optional[User]:
        try:
            return self._db.execute(select(User).where(User.email == email)).scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error(f"Erro ao buscar usuário: email={mask_email(email)}, error={type(e).__name__}: {e}")
            raise StorageError() from e

    def get_user(self, user_id: int) -> Optional[User]:
        try:
            return self._db.get(User, user_id)
        except SQLAlchemyError as e:
            logger.error(f"Erro ao buscar usuário: id={user_id}, error={type(e).__name__}: {e}")
            raise StorageError() from e

    def list_sites(self) -> List[AuctionSite]:
        try:
            return list(self._db.execute(select(AuctionSite).order_by(AuctionSite.id)).scalars())
        except SQLAlchemyError as e:
            logger.error(f"Erro ao listar sites: error={type(e).__name__}: {e}")
            raise StorageError() from e

    def get_site(self, site_id: int) -> Optional[AuctionSite]:
        try:
            return self._db.get(AuctionSite, site_id)
        except SQLAlchemyError as e:
            logger.error(f"Erro ao buscar site: id={site_id}, error={type(e).__name__}: {e}")
            raise StorageError() from e

    def create_site(self, name: str, url: str, selector: Optional[str] = None) -> AuctionSite:
        try:
            site = AuctionSite(name=name, url=url, selector=selector)
            self._db.add(site)
            self._db.commit()
            self._db.refresh(site)
            logger.info(f"Site cadastrado: id={site.id}, name={name}, url={url}")
            return site
        except IntegrityError as e:
            logger.warning(f"Site já cadastrado: url={url}")
            self._db.rollback()
            raise DuplicateSiteError(url) from e
        except SQLAlchemyError as e:
            logger.error(f"Erro ao cadastrar site: url={url}, error={type(e).__name__}: {e}", exc_info=True)
            self._db.rollback()
            raise StorageError() from e

    def link_user_to_site(self, user_id: int, site_id: int) -> bool:
        """
        Assina o site para o usuário. Retorna False se a assinatura já existia.
        """
        try:
            existing = self._db.execute(
                select(UserSite).where(UserSite.user_id == user_id, UserSite.site_id == site_id)
            ).scalar_one_or_none()
            if existing:
                return False
            self._db.add(UserSite(user_id=user_id, site_id=site_id))
            self._db.commit()
            logger.info(f"Assinatura criada: user_id={user_id}, site_id={site_id}")
            return True
        except IntegrityError:
            # Outra requisição criou a mesma assinatura antes
            self._db.rollback()
            return False
        except SQLAlchemyError as e:
            logger.error(
                f"Erro ao criar assinatura: user_id={user_id}, site_id={site_id}, "
                f"error={type(e).__name__}: {e}",
                exc_info=True,
            )
            self._db.rollback()
            raise StorageError() from e

    def list_user_sites(self, user_id: int) -> List[AuctionSite]:
        try:
            stmt = (
                select(AuctionSite)
                .join(UserSite, UserSite.site_id == AuctionSite.id)
                .where(UserSite.user_id == user_id)
                .order_by(AuctionSite.id)
            )
            return list(self._db.execute(stmt).scalars())
        except SQLAlchemyError as e:
            logger.error(f"Erro ao listar sites do usuário: user_id={user_id}, error={type(e).__name__}: {e}")
            raise StorageError() from e


def with_repository(session_factory: sessionmaker, action: Callable[[AuctionRepository], T]) -> T:
    """
    Abre uma sessão, executa `action` com o repositório e fecha a sessão.
    """
    db_session: Session = session_factory()
    try:
        return action(AuctionRepository(db_session))
    finally:
        db_session.close()
