"""create knowledge base tables

Revision ID: 0001_knowledge_base
Revises:
Create Date: 2026-03-02 12:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.engine import reflection


# revision identifiers, used by Alembic.
revision: str = '0001_knowledge_base'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    connection = op.get_bind()
    inspector = reflection.Inspector.from_engine(connection)
    existing_tables = inspector.get_table_names()

    if 'ingestion_sessions' not in existing_tables:
        op.create_table(
            'ingestion_sessions',
            sa.Column('session_id', sa.String(36), primary_key=True),
            sa.Column('organization_id', sa.String(255), nullable=False),
            sa.Column('agent_id', sa.String(255), nullable=False),
            sa.Column('file_name', sa.String(512), nullable=False),
            sa.Column('file_type', sa.String(32), nullable=False),
            sa.Column('file_size', sa.BigInteger(), nullable=False),
            sa.Column('source_type', sa.String(64), nullable=False, server_default='general'),
            sa.Column('stage', sa.String(32), nullable=False, server_default='uploading'),
            sa.Column('progress', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('preview_chunks', sa.JSON(), nullable=True),
            sa.Column('parsed_metadata', sa.JSON(), nullable=True),
            sa.Column('document_id', sa.String(36), nullable=True),
            sa.Column('chunk_count', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('error_message', sa.Text(), nullable=True),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
            sa.Column('uploaded_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('previewed_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('confirmed_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
        )
        op.create_index(op.f('ix_ingestion_sessions_organization_id'), 'ingestion_sessions', ['organization_id'])
        op.create_index(op.f('ix_ingestion_sessions_agent_id'), 'ingestion_sessions', ['agent_id'])
        op.create_index(op.f('ix_ingestion_sessions_stage'), 'ingestion_sessions', ['stage'])
        op.create_index(op.f('ix_ingestion_sessions_expires_at'), 'ingestion_sessions', ['expires_at'])

    if 'documents' not in existing_tables:
        op.create_table(
            'documents',
            sa.Column('document_id', sa.String(36), primary_key=True),
            sa.Column('organization_id', sa.String(255), nullable=False),
            sa.Column('agent_id', sa.String(255), nullable=False),
            sa.Column('file_name', sa.String(512), nullable=False),
            sa.Column('file_type', sa.String(32), nullable=False),
            sa.Column('file_size', sa.BigInteger(), nullable=False, server_default='0'),
            sa.Column('source_type', sa.String(64), nullable=False, server_default='general'),
            sa.Column('status', sa.String(32), nullable=False, server_default='processing'),
            sa.Column('chunk_count', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('rag_entry_ids', sa.JSON(), nullable=False, server_default='[]'),
            sa.Column('error_message', sa.Text(), nullable=True),
            sa.Column('document_metadata', sa.JSON(), nullable=False, server_default='{}'),
            sa.Column('uploaded_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
            sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        )
        op.create_index(op.f('ix_documents_organization_id'), 'documents', ['organization_id'])
        op.create_index(op.f('ix_documents_agent_id'), 'documents', ['agent_id'])

    if 'chunks' not in existing_tables:
        op.create_table(
            'chunks',
            sa.Column('chunk_id', sa.String(36), primary_key=True),
            sa.Column('document_id', sa.String(36), nullable=False),
            sa.Column('agent_id', sa.String(255), nullable=False),
            sa.Column('organization_id', sa.String(255), nullable=False),
            sa.Column('text', sa.Text(), nullable=False),
            sa.Column('token_count', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('size_bytes', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('chunk_index', sa.Integer(), nullable=False),
            sa.Column('total_chunks', sa.Integer(), nullable=False),
            sa.Column('page_number', sa.Integer(), nullable=True),
            sa.Column('section_title', sa.String(512), nullable=True),
            sa.Column('hierarchy_level', sa.Integer(), nullable=True),
            sa.Column('parent_chunk_id', sa.String(36), nullable=True),
            sa.Column('quality_score', sa.Float(), nullable=True),
            sa.Column('has_code', sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column('has_table', sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column('has_image', sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column('rag_entry_id', sa.String(255), nullable=True),
            sa.Column('rag_namespace', sa.String(255), nullable=False),
            sa.Column('access_count', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('avg_relevance_score', sa.Float(), nullable=True),
            sa.Column('last_accessed_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
            sa.UniqueConstraint('document_id', 'chunk_index', name='uq_chunks_document_index'),
        )
        op.create_index(op.f('ix_chunks_document_id'), 'chunks', ['document_id'])
        op.create_index(op.f('ix_chunks_agent_id'), 'chunks', ['agent_id'])
        op.create_index(op.f('ix_chunks_rag_entry_id'), 'chunks', ['rag_entry_id'])

    if 'agent_knowledge_metadata' not in existing_tables:
        op.create_table(
            'agent_knowledge_metadata',
            sa.Column('agent_id', sa.String(255), primary_key=True),
            sa.Column('organization_id', sa.String(255), nullable=False),
            sa.Column('total_chunks', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('total_size_bytes', sa.BigInteger(), nullable=False, server_default='0'),
            sa.Column('document_count', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('last_ingested_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('last_searched_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('status', sa.String(16), nullable=False, server_default='active'),
            sa.Column('chunk_keys_cache', sa.JSON(), nullable=True),
            sa.Column('search_cache_hit_rate', sa.Float(), nullable=True),
            sa.Column('avg_search_latency_ms', sa.Float(), nullable=True),
            sa.Column('search_count', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
            sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        )
        op.create_index(op.f('ix_agent_knowledge_metadata_organization_id'), 'agent_knowledge_metadata',
                        ['organization_id'])
        op.create_index(op.f('ix_agent_knowledge_metadata_status'), 'agent_knowledge_metadata', ['status'])

    if 'deletion_queue' not in existing_tables:
        op.create_table(
            'deletion_queue',
            sa.Column('id', sa.String(36), primary_key=True),
            sa.Column('agent_id', sa.String(255), nullable=False),
            sa.Column('organization_id', sa.String(255), nullable=False),
            sa.Column('deletion_type', sa.String(32), nullable=False),
            sa.Column('target_keys', sa.JSON(), nullable=True),
            sa.Column('document_ids', sa.JSON(), nullable=False, server_default='[]'),
            sa.Column('remove_agent', sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column('total_items', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('processed_items', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('status', sa.String(16), nullable=False, server_default='pending'),
            sa.Column('batch_size', sa.Integer(), nullable=False, server_default='50'),
            sa.Column('error_message', sa.Text(), nullable=True),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
            sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
            sa.CheckConstraint('processed_items <= total_items', name='ck_deletion_queue_progress'),
        )
        op.create_index(op.f('ix_deletion_queue_agent_id'), 'deletion_queue', ['agent_id'])
        op.create_index(op.f('ix_deletion_queue_status'), 'deletion_queue', ['status'])
        op.create_index(op.f('ix_deletion_queue_created_at'), 'deletion_queue', ['created_at'])

    if 'deleted_files' not in existing_tables:
        op.create_table(
            'deleted_files',
            sa.Column('id', sa.String(36), primary_key=True),
            sa.Column('document_id', sa.String(36), nullable=False),
            sa.Column('organization_id', sa.String(255), nullable=False),
            sa.Column('agent_id', sa.String(255), nullable=False),
            sa.Column('file_name', sa.String(512), nullable=False),
            sa.Column('file_type', sa.String(32), nullable=False),
            sa.Column('file_size', sa.BigInteger(), nullable=False, server_default='0'),
            sa.Column('source_type', sa.String(64), nullable=False, server_default='general'),
            sa.Column('chunk_count', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('rag_entry_ids', sa.JSON(), nullable=False, server_default='[]'),
            sa.Column('deleted_by', sa.String(255), nullable=True),
            sa.Column('deletion_reason', sa.String(255), nullable=True),
            sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
            sa.Column('backup_metadata', sa.JSON(), nullable=False, server_default='{}'),
            sa.Column('purge_at', sa.DateTime(timezone=True), nullable=False),
            sa.Column('is_purged', sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column('purged_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('original_uploaded_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('original_processed_at', sa.DateTime(timezone=True), nullable=True),
        )
        op.create_index(op.f('ix_deleted_files_document_id'), 'deleted_files', ['document_id'])
        op.create_index(op.f('ix_deleted_files_organization_id'), 'deleted_files', ['organization_id'])
        op.create_index(op.f('ix_deleted_files_agent_id'), 'deleted_files', ['agent_id'])
        op.create_index(op.f('ix_deleted_files_deleted_at'), 'deleted_files', ['deleted_at'])
        op.create_index(op.f('ix_deleted_files_purge_at'), 'deleted_files', ['purge_at'])
        op.create_index(op.f('ix_deleted_files_is_purged'), 'deleted_files', ['is_purged'])

    if 'chunk_access_log' not in existing_tables:
        op.create_table(
            'chunk_access_log',
            sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column('agent_id', sa.String(255), nullable=False),
            sa.Column('chunk_key', sa.String(255), nullable=False),
            sa.Column('access_count', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('avg_relevance_score', sa.Float(), nullable=False, server_default='0'),
            sa.Column('first_accessed_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
            sa.Column('last_accessed_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
            sa.UniqueConstraint('agent_id', 'chunk_key', name='uq_chunk_access_agent_key'),
        )
        op.create_index(op.f('ix_chunk_access_log_agent_id'), 'chunk_access_log', ['agent_id'])
        op.create_index(op.f('ix_chunk_access_log_access_count'), 'chunk_access_log', ['access_count'])


def downgrade() -> None:
    for table in (
        'chunk_access_log',
        'deleted_files',
        'deletion_queue',
        'agent_knowledge_metadata',
        'chunks',
        'documents',
        'ingestion_sessions',
    ):
        op.drop_table(table)
