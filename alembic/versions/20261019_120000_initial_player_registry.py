"""Initial player registry schema

Revision ID: 3e8a51c0b7d2
Revises:
Create Date: 2026-10-19 12:00:00.000000+00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# Revision identifiers, used by Alembic.
revision: str = "3e8a51c0b7d2"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(astext_type=sa.Text()), "postgresql")


def upgrade() -> None:
    op.create_table(
        "players",
        sa.Column("account_id", sa.String(length=32), nullable=False),
        sa.Column("chat_account_id", sa.String(length=32), nullable=True),
        sa.Column("chat_tag", sa.String(length=100), nullable=True),
        sa.Column("web_identity_verified", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("web_verified_at", sa.DateTime(), nullable=True),
        sa.Column("device_verified", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("last_device_check", sa.DateTime(), nullable=True),
        sa.Column("last_ip", sa.String(length=45), nullable=True),
        sa.Column("session_id", sa.String(length=32), nullable=True, server_default="pending"),
        sa.Column("awaiting_session_id", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("session_id_source", sa.String(length=30), nullable=True),
        sa.Column("session_id_updated_at", sa.DateTime(), nullable=True),
        sa.Column("display_name", sa.String(length=100), nullable=True),
        sa.Column("last_seen_in_session", sa.DateTime(), nullable=True),
        sa.Column("reward_issued", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("reward_issued_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("updated_at", sa.DateTime(), nullable=True, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.CheckConstraint(
            "NOT awaiting_session_id OR (web_identity_verified AND device_verified)",
            name="ck_players_awaiting_requires_verified",
        ),
        sa.CheckConstraint(
            "NOT reward_issued OR (web_identity_verified AND device_verified "
            "AND session_id IS NOT NULL AND session_id != 'pending')",
            name="ck_players_reward_requires_complete",
        ),
        sa.PrimaryKeyConstraint("account_id"),
    )
    op.create_index("idx_players_last_ip", "players", ["last_ip"], unique=False)
    op.create_index("idx_players_session_id", "players", ["session_id"], unique=False)
    op.create_index("idx_players_display_name", "players", ["display_name"], unique=False)
    op.create_index(
        "idx_players_awaiting",
        "players",
        ["awaiting_session_id", "last_device_check"],
        unique=False,
    )

    op.create_table(
        "player_account_ids",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("player_account_id", sa.String(length=32), nullable=False),
        sa.Column("account_id", sa.String(length=32), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=True, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.ForeignKeyConstraint(["player_account_id"], ["players.account_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("player_account_id", "account_id", name="uq_player_account_ids"),
    )
    op.create_index("idx_player_account_ids_account_id", "player_account_ids", ["account_id"], unique=False)

    op.create_table(
        "unmapped_sessions",
        sa.Column("session_id", sa.String(length=32), nullable=False),
        sa.Column("display_name", sa.String(length=100), nullable=True),
        sa.Column("last_ip", sa.String(length=45), nullable=True),
        sa.Column("last_seen", sa.DateTime(), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("source", sa.String(length=30), nullable=False, server_default="be_log"),
        sa.PrimaryKeyConstraint("session_id"),
    )

    op.create_table(
        "transient_connections",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("source", sa.String(length=255), nullable=False),
        sa.Column("connection_id", sa.Integer(), nullable=False),
        sa.Column("display_name", sa.String(length=100), nullable=True),
        sa.Column("ip", sa.String(length=45), nullable=False),
        sa.Column("connected_at", sa.DateTime(), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("source", "connection_id", name="uq_transient_connection_slot"),
    )
    op.create_index(
        "idx_transient_connections_connected_at", "transient_connections", ["connected_at"], unique=False
    )

    op.create_table(
        "correlation_abstentions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("session_id", sa.String(length=32), nullable=False),
        sa.Column("display_name", sa.String(length=100), nullable=True),
        sa.Column("ip", sa.String(length=45), nullable=True),
        sa.Column("candidate_account_ids", JSON_TYPE, nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_correlation_abstentions_session",
        "correlation_abstentions",
        ["session_id", "created_at"],
        unique=False,
    )

    op.create_table(
        "chat_log",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("log_time", sa.String(length=8), nullable=True),
        sa.Column("channel", sa.String(length=30), nullable=False),
        sa.Column("player_name", sa.String(length=100), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("received_at", sa.DateTime(), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "tail_checkpoints",
        sa.Column("key", sa.String(length=512), nullable=False),
        sa.Column("value_json", JSON_TYPE, nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.PrimaryKeyConstraint("key"),
    )


def downgrade() -> None:
    op.drop_table("tail_checkpoints")
    op.drop_table("chat_log")
    op.drop_index("idx_correlation_abstentions_session", table_name="correlation_abstentions")
    op.drop_table("correlation_abstentions")
    op.drop_index("idx_transient_connections_connected_at", table_name="transient_connections")
    op.drop_table("transient_connections")
    op.drop_table("unmapped_sessions")
    op.drop_index("idx_player_account_ids_account_id", table_name="player_account_ids")
    op.drop_table("player_account_ids")
    op.drop_index("idx_players_awaiting", table_name="players")
    op.drop_index("idx_players_display_name", table_name="players")
    op.drop_index("idx_players_session_id", table_name="players")
    op.drop_index("idx_players_last_ip", table_name="players")
    op.drop_table("players")
