"""initial create users and auction sites

Revision ID: 001
Revises: 
Create Date: 2026-10-19 10:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Usuários cadastrados pelo bot (senha só como hash bcrypt)
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('full_name', sa.String(length=200), nullable=False),
        sa.Column('email', sa.String(length=200), nullable=False),
        sa.Column('cpf', sa.String(length=11), nullable=False),
        sa.Column('cnpj', sa.String(length=14), nullable=True),
        sa.Column('primary_address', sa.String(length=300), nullable=False),
        sa.Column('secondary_address', sa.String(length=300), nullable=True),
        sa.Column('document_file_id', sa.String(length=200), nullable=False),
        sa.Column('residence_proof_file_id', sa.String(length=200), nullable=False),
        sa.Column('password_hash', sa.String(length=100), nullable=False),
        sa.Column('chat_id', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email'),
    )

    # Sites de leiloeiros
    op.create_table(
        'auction_sites',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('url', sa.String(length=500), nullable=False),
        sa.Column('selector', sa.String(length=300), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('url'),
    )

    # Assinaturas usuário x site
    op.create_table(
        'user_sites',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('site_id', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.ForeignKeyConstraint(['site_id'], ['auction_sites.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'site_id', name='uq_user_sites_user_site'),
    )


def downgrade() -> None:
    op.drop_table('user_sites')
    op.drop_table('auction_sites')
    op.drop_table('users')
