from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, UniqueConstraint
from datetime import datetime
from .database import Base


class User(Base):
    """
    Usuário cadastrado pelo bot. A senha só é guardada como hash bcrypt.
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    full_name = Column(String(200), nullable=False)
    email = Column(String(200), nullable=False, unique=True)
    cpf = Column(String(11), nullable=False)
    cnpj = Column(String(14), nullable=True)
    primary_address = Column(String(300), nullable=False)
    secondary_address = Column(String(300), nullable=True)
    document_file_id = Column(String(200), nullable=False)
    residence_proof_file_id = Column(String(200), nullable=False)
    password_hash = Column(String(100), nullable=False)
    # Chat de origem, para notificações
    chat_id = Column(String(64), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class AuctionSite(Base):
    """
    Site de leiloeiro de onde os editais são buscados.
    """
    __tablename__ = "auction_sites"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(200), nullable=False)
    url = Column(String(500), nullable=False, unique=True)
    selector = Column(String(300), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class UserSite(Base):
    __tablename__ = "user_sites"
    __table_args__ = (UniqueConstraint("user_id", "site_id", name="uq_user_sites_user_site"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    site_id = Column(Integer, ForeignKey("auction_sites.id"), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
