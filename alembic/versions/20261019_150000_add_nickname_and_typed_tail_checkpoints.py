"""Add player nickname and store tail checkpoints as typed offset/size columns

Revision ID: 7b9d04e6a1f3
Revises: 3e8a51c0b7d2
Create Date: 2026-10-19 15:00:00.000000+00:00

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# Revision identifiers, used by Alembic
revision: str = '7b9d04e6a1f3'
down_revision: Union[str, None] = '3e8a51c0b7d2'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(astext_type=sa.Text()), "postgresql")


def upgrade() -> None:
    """Upgrade database schema."""
    with op.batch_alter_table('players') as batch:
        batch.add_column(sa.Column('nickname', sa.String(length=100), nullable=True))
        batch.add_column(sa.Column('nickname_updated_at', sa.DateTime(), nullable=True))
        batch.create_index('idx_players_nickname', ['nickname'], unique=False)

    with op.batch_alter_table('tail_checkpoints') as batch:
        batch.add_column(sa.Column('byte_offset', sa.BigInteger(), nullable=False, server_default='0'))
        batch.add_column(sa.Column('file_size', sa.BigInteger(), nullable=False, server_default='0'))

    # Carry existing positions over so a restarted monitor does not replay files.
    if op.get_bind().dialect.name == 'postgresql':
        op.execute(
            "UPDATE tail_checkpoints SET "
            "byte_offset = COALESCE((value_json->>'offset')::bigint, 0), "
            "file_size = COALESCE((value_json->>'size')::bigint, 0)"
        )
    else:
        op.execute(
            "UPDATE tail_checkpoints SET "
            "byte_offset = COALESCE(json_extract(value_json, '$.offset'), 0), "
            "file_size = COALESCE(json_extract(value_json, '$.size'), 0)"
        )

    with op.batch_alter_table('tail_checkpoints') as batch:
        batch.drop_column('value_json')


def downgrade() -> None:
    """Downgrade database schema."""
    with op.batch_alter_table('tail_checkpoints') as batch:
        batch.add_column(sa.Column('value_json', JSON_TYPE, nullable=True))

    if op.get_bind().dialect.name == 'postgresql':
        op.execute(
            "UPDATE tail_checkpoints SET value_json = "
            "jsonb_build_object('offset', byte_offset, 'size', file_size)"
        )
    else:
        op.execute(
            "UPDATE tail_checkpoints SET value_json = "
            "json_object('offset', byte_offset, 'size', file_size)"
        )

    with op.batch_alter_table('tail_checkpoints') as batch:
        batch.alter_column('value_json', existing_type=JSON_TYPE, nullable=False)
        batch.drop_column('file_size')
        batch.drop_column('byte_offset')

    with op.batch_alter_table('players') as batch:
        batch.drop_index('idx_players_nickname')
        batch.drop_column('nickname_updated_at')
        batch.drop_column('nickname')
