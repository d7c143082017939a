"""csrf tokens and api keys

Revision ID: 0001
Revises:
Create Date: 2026-10-19 09:00:00

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "csrf_token",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(length=255), nullable=False),
        sa.Column("token_hash", sa.String(length=64), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_csrf_token_user_id", "csrf_token", ["user_id"])
    op.create_index("ix_csrf_token_expires_at", "csrf_token", ["expires_at"])
    op.create_index("ix_csrf_token_user_hash", "csrf_token", ["user_id", "token_hash"])

    op.create_table(
        "user_api_key",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("user_id", sa.String(length=255), nullable=False),
        sa.Column("api_key", sa.String(length=72), nullable=False, unique=True),
        sa.Column("name", sa.String(length=50), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("last_used_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("expires_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_user_api_key_user_id", "user_api_key", ["user_id"])


def downgrade() -> None:
    op.drop_index("ix_user_api_key_user_id", table_name="user_api_key")
    op.drop_table("user_api_key")
    op.drop_index("ix_csrf_token_user_hash", table_name="csrf_token")
    op.drop_index("ix_csrf_token_expires_at", table_name="csrf_token")
    op.drop_index("ix_csrf_token_user_id", table_name="csrf_token")
    op.drop_table("csrf_token")
