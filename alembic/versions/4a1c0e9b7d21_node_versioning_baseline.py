"""node, node_version, node_link baseline

Revision ID: 4a1c0e9b7d21
Revises:
Create Date: 2026-10-19 09:12:44.381920

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql as psql

# revision identifiers, used by Alembic.
revision: str = '4a1c0e9b7d21'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSONType = sa.JSON().with_variant(psql.JSONB(), "postgresql")
NODE_KIND = sa.Enum("topic", "debate", "reference", name="nodekind", native_enum=False)
NODE_STATUS = sa.Enum("draft", "published", "archived", name="nodestatus", native_enum=False)
LINK_KIND = sa.Enum("reference", "debate", name="linkkind", native_enum=False)


def upgrade() -> None:
    op.create_table(
        'node',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('kind', NODE_KIND, nullable=False),
        sa.Column('slug', sa.String(128), nullable=False),
        sa.Column('title', sa.String(500), nullable=False),
        sa.Column('summary', sa.Text(), nullable=True),
        sa.Column('status', NODE_STATUS, nullable=False),
        sa.Column('parent_id', sa.String(36), sa.ForeignKey('node.id', ondelete='RESTRICT'), nullable=True),
        sa.Column('level', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('path', sa.Text(), nullable=False),
        sa.Column('live_content', JSONType, nullable=False),
        sa.Column('references', JSONType, nullable=False),
        sa.Column('debates', JSONType, nullable=False),
        sa.Column('search_text', sa.Text(), nullable=False, server_default=''),
        sa.Column('version_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_deleted', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_by', sa.String(64), nullable=True),
        sa.Column('updated_by', sa.String(64), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint('kind', 'slug', name='uq_node_kind_slug'),
    )
    op.create_index('ix_node_parent_id', 'node', ['parent_id'])
    op.create_index('ix_node_is_deleted', 'node', ['is_deleted'])
    op.create_index('ix_node_kind_level', 'node', ['kind', 'level'])
    op.create_index(
        'ix_node_kind_path', 'node', ['kind', 'path'],
        postgresql_ops={'path': 'text_pattern_ops'},
    )

    op.create_table(
        'node_version',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('node_id', sa.String(36), sa.ForeignKey('node.id', ondelete='CASCADE'), nullable=False),
        sa.Column('version_id', sa.Integer(), nullable=False),
        sa.Column('changed_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('changed_by', sa.String(64), nullable=True),
        sa.Column('changes', JSONType, nullable=False),
        sa.Column('content_blocks', JSONType, nullable=False),
        sa.UniqueConstraint('node_id', 'version_id', name='uq_node_version'),
    )
    op.create_index('ix_node_version_node_id', 'node_version', ['node_id'])

    op.create_table(
        'node_link',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('node_id', sa.String(36), sa.ForeignKey('node.id', ondelete='CASCADE'), nullable=False),
        sa.Column('link_kind', LINK_KIND, nullable=False),
        sa.Column('target_id', sa.String(128), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False, server_default='0'),
        sa.UniqueConstraint('node_id', 'link_kind', 'target_id', name='uq_node_link_once'),
    )
    op.create_index('ix_node_link_node_id', 'node_link', ['node_id'])
    op.create_index('ix_node_link_target', 'node_link', ['link_kind', 'target_id'])


def downgrade() -> None:
    op.drop_index('ix_node_link_target', table_name='node_link')
    op.drop_index('ix_node_link_node_id', table_name='node_link')
    op.drop_table('node_link')
    op.drop_index('ix_node_version_node_id', table_name='node_version')
    op.drop_table('node_version')
    op.drop_index('ix_node_kind_path', table_name='node')
    op.drop_index('ix_node_kind_level', table_name='node')
    op.drop_index('ix_node_is_deleted', table_name='node')
    op.drop_index('ix_node_parent_id', table_name='node')
    op.drop_table('node')
