"""Create the document store table

Revision ID: a3d91c5e7f20
Revises:
Create Date: 2026-10-19T09:12:44.310558
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

# revision identifiers
revision: str = 'a3d91c5e7f20'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # --- documents ---
    op.create_table(
        'documents',
        sa.Column('seq', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('org_id', sa.String(), nullable=False),
        sa.Column('path', sa.String(), nullable=False),
        sa.Column('doc_id', sa.String(), nullable=False),
        sa.Column('data', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('seq'),
        sa.UniqueConstraint('org_id', 'path', 'doc_id', name='uq_document_address'),
    )
    op.create_index('ix_documents_org_id', 'documents', ['org_id'])
    op.create_index('idx_document_collection', 'documents', ['org_id', 'path', 'created_at'])


def downgrade() -> None:
    op.drop_index('idx_document_collection', table_name='documents')
    op.drop_index('ix_documents_org_id', table_name='documents')
    op.drop_table('documents')
