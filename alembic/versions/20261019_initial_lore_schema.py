"""initial lore schema

Revision ID: 20261019_initial_lore_schema
Revises:
Create Date: 2026-10-19 10:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql
from pgvector.sqlalchemy import Vector

# revision identifiers, used by Alembic.
revision = '20261019_initial_lore_schema'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute("CREATE EXTENSION IF NOT EXISTS vector")

    op.create_table(
        'campaigns',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('setting', sa.Text(), nullable=True),
        sa.Column('remote_brain_id', sa.String(length=255), nullable=True),
        sa.Column('remote_session_id', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    )

    op.create_table(
        'documents',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('campaign_id', sa.Integer(), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('content', sa.Text(), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['campaign_id'], ['campaigns.id'], name='fk_documents_campaign'),
    )
    op.create_index('ix_documents_campaign_id', 'documents', ['campaign_id'])

    op.create_table(
        'document_history',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('document_id', sa.Integer(), nullable=False),
        sa.Column('content', sa.Text(), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['document_id'], ['documents.id'], name='fk_document_history_document'),
    )
    op.create_index('ix_document_history_document_id', 'document_history', ['document_id'])
    op.create_index('ix_document_history_created_at', 'document_history', ['created_at'])

    op.create_table(
        'source_books',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('campaign_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('file_path', sa.Text(), nullable=True),
        sa.Column('text_content', sa.Text(), nullable=True),
        sa.Column('file_uri', sa.Text(), nullable=False),
        sa.Column('mime_type', sa.String(length=128), nullable=False, server_default='application/pdf'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['campaign_id'], ['campaigns.id'], name='fk_source_books_campaign'),
    )
    op.create_index('ix_source_books_campaign_id', 'source_books', ['campaign_id'])
    op.create_index('ix_source_books_file_uri', 'source_books', ['file_uri'])

    op.create_table(
        'global_sources',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('file_path', sa.Text(), nullable=True),
        sa.Column('text_content', sa.Text(), nullable=True),
        sa.Column('file_uri', sa.Text(), nullable=False),
        sa.Column('mime_type', sa.String(length=128), nullable=False, server_default='application/pdf'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    )
    op.create_index('ix_global_sources_file_uri', 'global_sources', ['file_uri'])

    op.create_table(
        'source_chunks',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('source_id', sa.Integer(), nullable=False),
        sa.Column('chunk_index', sa.Integer(), nullable=False),
        sa.Column('text', sa.Text(), nullable=False),
        sa.Column('embedding', Vector(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['source_id'], ['source_books.id'], name='fk_source_chunks_source'),
    )
    op.create_index('ix_source_chunks_source_id', 'source_chunks', ['source_id'])

    op.create_table(
        'audit_logs',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('action', sa.String(length=64), nullable=False),
        sa.Column('details', sa.Text(), nullable=True),
        sa.Column('timestamp', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    )
    op.create_index('ix_audit_logs_action', 'audit_logs', ['action'])

    op.create_table(
        'ingestion_runs',
        sa.Column('id', sa.String(length=64), primary_key=True),
        sa.Column('job_type', sa.String(length=32), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('requested', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('success', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('error_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('data', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
    )
    op.create_index('ix_ingestion_runs_job_type', 'ingestion_runs', ['job_type'])
    op.create_index('ix_ingestion_runs_created_at', 'ingestion_runs', ['created_at'])


def downgrade() -> None:
    op.drop_index('ix_ingestion_runs_created_at', table_name='ingestion_runs')
    op.drop_index('ix_ingestion_runs_job_type', table_name='ingestion_runs')
    op.drop_table('ingestion_runs')

    op.drop_index('ix_audit_logs_action', table_name='audit_logs')
    op.drop_table('audit_logs')

    op.drop_index('ix_source_chunks_source_id', table_name='source_chunks')
    op.drop_table('source_chunks')

    op.drop_index('ix_global_sources_file_uri', table_name='global_sources')
    op.drop_table('global_sources')

    op.drop_index('ix_source_books_file_uri', table_name='source_books')
    op.drop_index('ix_source_books_campaign_id', table_name='source_books')
    op.drop_table('source_books')

    op.drop_index('ix_document_history_created_at', table_name='document_history')
    op.drop_index('ix_document_history_document_id', table_name='document_history')
    op.drop_table('document_history')

    op.drop_index('ix_documents_campaign_id', table_name='documents')
    op.drop_table('documents')

    op.drop_table('campaigns')
