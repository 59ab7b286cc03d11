"""surveys, structure, recipients, responses, drafts, receipts, outbox, members, audit

Revision ID: 0001_survey_engine
Revises:
Create Date: 2026-10-18
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = '0001_survey_engine'
down_revision = None
branch_labels = None
depends_on = None

JSONType = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")
BigIntPK = sa.BigInteger().with_variant(sa.Integer(), "sqlite")


def _ts(name, **kw):
    return sa.Column(name, sa.DateTime(timezone=True), **kw)


def upgrade():
    op.create_table(
        'members',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('email', sa.String(255), nullable=False, unique=True),
        sa.Column('name', sa.String(200), nullable=True),
        sa.Column('department', sa.String(120), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='activo'),
        _ts('created_at', server_default=sa.func.now()),
    )
    op.create_index('ix_members_department', 'members', ['department'])

    op.create_table(
        'surveys',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('is_anonymous', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('is_mandatory', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('audience_kind', sa.String(20), nullable=False, server_default='all'),
        sa.Column('audience_department', sa.String(120), nullable=True),
        sa.Column('audience_ids', JSONType, nullable=True),
        sa.Column('points_awarded', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('reminder_days', sa.Integer(), nullable=False, server_default='0'),
        _ts('open_date', nullable=True),
        _ts('close_date', nullable=True),
        sa.Column('state', sa.String(20), nullable=False, server_default='draft'),
        sa.Column('created_by', sa.Uuid(), nullable=True),
        _ts('created_at', server_default=sa.func.now(), nullable=False),
        _ts('updated_at', server_default=sa.func.now(), nullable=False),
        _ts('published_at', nullable=True),
        _ts('completed_at', nullable=True),
        _ts('archived_at', nullable=True),
        _ts('reminder_sent_at', nullable=True),
        sa.Column('total_recipients', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('anonymous_completed', sa.Integer(), nullable=False, server_default='0'),
        sa.CheckConstraint("state IN ('draft','active','completed','archived')", name='ck_survey_state'),
    )
    op.create_index('ix_surveys_state', 'surveys', ['state'])
    op.create_index('ix_surveys_created_by', 'surveys', ['created_by'])

    op.create_table(
        'survey_sections',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('survey_id', sa.Uuid(), sa.ForeignKey('surveys.id', ondelete='CASCADE'), nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.UniqueConstraint('survey_id', 'position', name='uq_section_position'),
    )
    op.create_index('ix_survey_sections_survey_id', 'survey_sections', ['survey_id'])

    op.create_table(
        'questions',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('survey_id', sa.Uuid(), sa.ForeignKey('surveys.id', ondelete='CASCADE'), nullable=False),
        sa.Column('section_id', sa.Uuid(), sa.ForeignKey('survey_sections.id', ondelete='CASCADE'), nullable=False),
        sa.Column('text', sa.Text(), nullable=False, server_default=''),
        sa.Column('type', sa.String(30), nullable=False),
        sa.Column('is_required', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('config', JSONType, nullable=False),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.UniqueConstraint('section_id', 'position', name='uq_question_position'),
    )
    op.create_index('ix_questions_survey_id', 'questions', ['survey_id'])
    op.create_index('ix_questions_section_id', 'questions', ['section_id'])

    op.create_table(
        'survey_recipients',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('survey_id', sa.Uuid(), sa.ForeignKey('surveys.id', ondelete='CASCADE'), nullable=False),
        sa.Column('member_id', sa.Uuid(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        _ts('created_at', server_default=sa.func.now(), nullable=False),
        _ts('completed_at', nullable=True),
        sa.UniqueConstraint('survey_id', 'member_id', name='uq_recipient_survey_member'),
    )
    op.create_index('ix_survey_recipients_survey_id', 'survey_recipients', ['survey_id'])
    op.create_index('ix_survey_recipients_member_id', 'survey_recipients', ['member_id'])
    op.create_index('ix_survey_recipients_status', 'survey_recipients', ['status'])

    op.create_table(
        'survey_responses',
        sa.Column('id', BigIntPK, primary_key=True, autoincrement=True),
        sa.Column('survey_id', sa.Uuid(), sa.ForeignKey('surveys.id', ondelete='CASCADE'), nullable=False),
        sa.Column('question_id', sa.Uuid(), sa.ForeignKey('questions.id', ondelete='CASCADE'), nullable=False),
        sa.Column('recipient_id', sa.Uuid(), sa.ForeignKey('survey_recipients.id', ondelete='CASCADE'), nullable=True),
        sa.Column('value', JSONType, nullable=False),
        _ts('created_at', nullable=True),
        sa.UniqueConstraint('question_id', 'recipient_id', name='uq_response_question_recipient'),
    )
    op.create_index('ix_survey_responses_survey_id', 'survey_responses', ['survey_id'])
    op.create_index('ix_survey_responses_question_id', 'survey_responses', ['question_id'])
    op.create_index('ix_survey_responses_recipient_id', 'survey_responses', ['recipient_id'])

    op.create_table(
        'response_drafts',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('survey_id', sa.Uuid(), sa.ForeignKey('surveys.id', ondelete='CASCADE'), nullable=False),
        sa.Column('section_id', sa.Uuid(), sa.ForeignKey('survey_sections.id', ondelete='CASCADE'), nullable=False),
        sa.Column('owner_key', sa.String(80), nullable=False),
        sa.Column('answers', JSONType, nullable=False),
        _ts('updated_at', server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint('survey_id', 'section_id', 'owner_key', name='uq_draft_owner_section'),
    )
    op.create_index('ix_response_drafts_survey_id', 'response_drafts', ['survey_id'])
    op.create_index('ix_response_drafts_owner_key', 'response_drafts', ['owner_key'])

    op.create_table(
        'anonymous_receipts',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('survey_id', sa.Uuid(), sa.ForeignKey('surveys.id', ondelete='CASCADE'), nullable=False),
        sa.Column('digest', sa.String(64), nullable=False),
        sa.UniqueConstraint('survey_id', 'digest', name='uq_receipt_survey_digest'),
    )
    op.create_index('ix_anonymous_receipts_survey_id', 'anonymous_receipts', ['survey_id'])

    op.create_table(
        'completion_events',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('survey_id', sa.Uuid(), sa.ForeignKey('surveys.id', ondelete='CASCADE'), nullable=False),
        sa.Column('member_id', sa.Uuid(), nullable=False),
        sa.Column('points', sa.Integer(), nullable=False),
        _ts('created_at', nullable=True),
        _ts('delivered_at', nullable=True),
        sa.UniqueConstraint('survey_id', 'member_id', name='uq_completion_survey_member'),
    )
    op.create_index('ix_completion_events_survey_id', 'completion_events', ['survey_id'])
    op.create_index('ix_completion_events_delivered_at', 'completion_events', ['delivered_at'])

    op.create_table(
        'audit_logs',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('actor_id', sa.Uuid(), nullable=True),
        sa.Column('action', sa.String(), nullable=False),
        sa.Column('payload', JSONType, nullable=True),
        sa.Column('ip', sa.String(), nullable=True),
        sa.Column('ua', sa.Text(), nullable=True),
        _ts('created_at', server_default=sa.func.now(), nullable=True),
    )
    op.create_index('ix_audit_logs_actor_id', 'audit_logs', ['actor_id'])


def downgrade():
    op.drop_table('audit_logs')
    op.drop_table('completion_events')
    op.drop_table('anonymous_receipts')
    op.drop_table('response_drafts')
    op.drop_table('survey_responses')
    op.drop_table('survey_recipients')
    op.drop_table('questions')
    op.drop_table('survey_sections')
    op.drop_table('surveys')
    op.drop_table('members')
