"""create chat_sessions, chat_messages and operator_presence tables

Revision ID: 0001
Revises:
Create Date: 2026-10-18

"""

from typing import Sequence, Union

import sqlalchemy as sa
from sqlalchemy import text
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "chat_sessions",
        sa.Column("id", sa.String(length=32), nullable=False),
        sa.Column("visitor_id", sa.String(length=64), nullable=False),
        sa.Column("visitor_name", sa.String(length=255), nullable=True),
        sa.Column("visitor_email", sa.String(length=255), nullable=True),
        sa.Column("language", sa.String(length=8), nullable=False),
        sa.Column("product_context", postgresql.JSONB(), nullable=True),
        sa.Column("entry_url", sa.Text(), nullable=True),
        sa.Column("current_page_url", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("assigned_operator_id", sa.String(length=64), nullable=True),
        sa.Column("is_offline_message", sa.Boolean(), nullable=False),
        sa.Column(
            "last_message_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_chat_sessions"),
    )
    op.create_index(
        "uq_chat_sessions_open_visitor",
        "chat_sessions",
        ["visitor_id"],
        unique=True,
        postgresql_where=text("status != 'closed'"),
    )
    op.create_index(
        "ix_chat_sessions_visitor_id_created_at",
        "chat_sessions",
        ["visitor_id", "created_at"],
    )
    op.create_index(
        "ix_chat_sessions_status_last_message_at",
        "chat_sessions",
        ["status", "last_message_at"],
    )

    op.create_table(
        "chat_messages",
        sa.Column("seq", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("id", sa.String(length=32), nullable=False),
        sa.Column("session_id", sa.String(length=32), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("sender_type", sa.String(length=16), nullable=False),
        sa.Column("sender_id", sa.String(length=64), nullable=True),
        sa.Column("sender_name", sa.String(length=255), nullable=True),
        sa.Column("message_type", sa.String(length=16), nullable=False),
        sa.Column("metadata", postgresql.JSONB(), nullable=True),
        sa.Column("read_by_visitor", sa.Boolean(), nullable=False),
        sa.Column("read_by_operator", sa.Boolean(), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("seq", name="pk_chat_messages"),
        sa.UniqueConstraint("id", name="uq_chat_messages_id"),
        sa.ForeignKeyConstraint(
            ["session_id"],
            ["chat_sessions.id"],
            name="fk_chat_messages_session_id_chat_sessions",
            ondelete="CASCADE",
        ),
    )
    op.create_index(
        "ix_chat_messages_session_id_created_at",
        "chat_messages",
        ["session_id", "created_at"],
    )

    op.create_table(
        "operator_presence",
        sa.Column("operator_id", sa.String(length=64), nullable=False),
        sa.Column("display_name", sa.String(length=255), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column(
            "last_heartbeat",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("operator_id", name="pk_operator_presence"),
    )
    op.create_index(
        "ix_operator_presence_status_heartbeat",
        "operator_presence",
        ["status", "last_heartbeat"],
    )


def downgrade() -> None:
    op.drop_index(
        "ix_operator_presence_status_heartbeat", table_name="operator_presence"
    )
    op.drop_table("operator_presence")
    op.drop_index(
        "ix_chat_messages_session_id_created_at", table_name="chat_messages"
    )
    op.drop_table("chat_messages")
    op.drop_index(
        "ix_chat_sessions_status_last_message_at", table_name="chat_sessions"
    )
    op.drop_index(
        "ix_chat_sessions_visitor_id_created_at", table_name="chat_sessions"
    )
    op.drop_index("uq_chat_sessions_open_visitor", table_name="chat_sessions")
    op.drop_table("chat_sessions")
