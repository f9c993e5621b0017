"""admissions core tables

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19 00:01:00
"""

from alembic import op
import sqlalchemy as sa


revision = '20261019_0001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'institutions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(length=180), nullable=False),
        sa.Column('slug', sa.String(length=120), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_institutions_id', 'institutions', ['id'])
    op.create_index('ix_institutions_slug', 'institutions', ['slug'], unique=True)
    op.create_index('ix_institutions_created_at', 'institutions', ['created_at'])

    op.create_table(
        'school_classes',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('institution_id', sa.Integer(), sa.ForeignKey('institutions.id'), nullable=False),
        sa.Column('name', sa.String(length=80), nullable=False),
        sa.UniqueConstraint('institution_id', 'name', name='uq_school_classes_institution_name'),
    )
    op.create_index('ix_school_classes_id', 'school_classes', ['id'])
    op.create_index('ix_school_classes_institution_id', 'school_classes', ['institution_id'])

    op.create_table(
        'sections',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('class_id', sa.Integer(), sa.ForeignKey('school_classes.id'), nullable=False),
        sa.Column('name', sa.String(length=40), nullable=False),
        sa.Column('capacity', sa.Integer(), nullable=False, server_default='40'),
        sa.UniqueConstraint('class_id', 'name', name='uq_sections_class_name'),
    )
    op.create_index('ix_sections_id', 'sections', ['id'])
    op.create_index('ix_sections_class_id', 'sections', ['class_id'])

    op.create_table(
        'identifier_counters',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('institution_id', sa.Integer(), nullable=False),
        sa.Column('kind', sa.String(length=40), nullable=False),
        sa.Column('scope_key', sa.String(length=80), nullable=False, server_default=''),
        sa.Column('value', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('institution_id', 'kind', 'scope_key', name='uq_identifier_counters_scope'),
    )
    op.create_index('ix_identifier_counters_id', 'identifier_counters', ['id'])
    op.create_index('ix_identifier_counters_institution_id', 'identifier_counters', ['institution_id'])
    op.create_index('ix_identifier_counters_kind', 'identifier_counters', ['kind'])

    op.create_table(
        'admission_applications',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('institution_id', sa.Integer(), sa.ForeignKey('institutions.id'), nullable=False),
        sa.Column('application_number', sa.String(length=40), nullable=False),
        sa.Column('academic_year', sa.String(length=20), nullable=False, server_default=''),
        sa.Column('applying_for_class_id', sa.Integer(), sa.ForeignKey('school_classes.id'), nullable=False),
        sa.Column('status', sa.String(length=30), nullable=False, server_default='submitted'),
        sa.Column('review_remarks', sa.Text(), nullable=False, server_default=''),
        sa.Column('primary_contact', sa.String(length=20), nullable=False, server_default='father'),
        sa.Column('student_info', sa.JSON(), nullable=False),
        sa.Column('father_info', sa.JSON(), nullable=False),
        sa.Column('mother_info', sa.JSON(), nullable=False),
        sa.Column('guardian_info', sa.JSON(), nullable=False),
        sa.Column('address', sa.JSON(), nullable=False),
        sa.Column('previous_school', sa.JSON(), nullable=False),
        sa.Column('documents', sa.JSON(), nullable=False),
        sa.Column('submitted_by', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('institution_id', 'application_number', name='uq_admission_applications_number'),
    )
    op.create_index('ix_admission_applications_id', 'admission_applications', ['id'])
    op.create_index('ix_admission_applications_institution_id', 'admission_applications', ['institution_id'])
    op.create_index('ix_admission_applications_application_number', 'admission_applications', ['application_number'])
    op.create_index('ix_admission_applications_applying_for_class_id', 'admission_applications', ['applying_for_class_id'])
    op.create_index('ix_admission_applications_status', 'admission_applications', ['status'])
    op.create_index('ix_admission_applications_created_at', 'admission_applications', ['created_at'])
    op.create_index(
        'ix_admission_applications_institution_status',
        'admission_applications',
        ['institution_id', 'status'],
    )

    op.create_table(
        'application_status_history',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('application_id', sa.Integer(), sa.ForeignKey('admission_applications.id'), nullable=False),
        sa.Column('status', sa.String(length=30), nullable=False),
        sa.Column('changed_at', sa.DateTime(), nullable=False),
        sa.Column('changed_by', sa.Integer(), nullable=True),
        sa.Column('remarks', sa.Text(), nullable=False, server_default=''),
    )
    op.create_index('ix_application_status_history_id', 'application_status_history', ['id'])
    op.create_index('ix_application_status_history_application_id', 'application_status_history', ['application_id'])

    op.create_table(
        'user_accounts',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('institution_id', sa.Integer(), sa.ForeignKey('institutions.id'), nullable=True),
        sa.Column('email', sa.String(length=180), nullable=False),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('role', sa.String(length=30), nullable=False),
        sa.Column('first_name', sa.String(length=120), nullable=False, server_default=''),
        sa.Column('last_name', sa.String(length=120), nullable=False, server_default=''),
        sa.Column('phone', sa.String(length=20), nullable=False, server_default=''),
        sa.Column('profile', sa.JSON(), nullable=False),
        sa.Column('class_id', sa.Integer(), sa.ForeignKey('school_classes.id'), nullable=True),
        sa.Column('section_id', sa.Integer(), sa.ForeignKey('sections.id'), nullable=True),
        sa.Column('roll_number', sa.String(length=40), nullable=False, server_default=''),
        sa.Column('admission_number', sa.String(length=40), nullable=False, server_default=''),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_user_accounts_id', 'user_accounts', ['id'])
    op.create_index('ix_user_accounts_email', 'user_accounts', ['email'], unique=True)
    op.create_index('ix_user_accounts_role', 'user_accounts', ['role'])
    op.create_index('ix_user_accounts_institution_id', 'user_accounts', ['institution_id'])
    op.create_index('ix_user_accounts_created_at', 'user_accounts', ['created_at'])

    op.create_table(
        'enrollment_records',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('institution_id', sa.Integer(), sa.ForeignKey('institutions.id'), nullable=False),
        sa.Column('application_id', sa.Integer(), sa.ForeignKey('admission_applications.id'), nullable=False),
        sa.Column('academic_year', sa.String(length=20), nullable=False, server_default=''),
        sa.Column('class_id', sa.Integer(), sa.ForeignKey('school_classes.id'), nullable=False),
        sa.Column('section_id', sa.Integer(), nullable=False),
        sa.Column('admission_number', sa.String(length=40), nullable=False),
        sa.Column('roll_number', sa.String(length=40), nullable=False),
        sa.Column('admission_fee_amount', sa.Float(), nullable=False, server_default='0'),
        sa.Column('admission_fee_paid', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('student_account_id', sa.Integer(), nullable=False),
        sa.Column('parent_account_id', sa.Integer(), nullable=False),
        sa.Column('remarks', sa.Text(), nullable=False, server_default=''),
        sa.Column('enrolled_by', sa.Integer(), nullable=True),
        sa.Column('enrolled_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('application_id', name='uq_enrollment_records_application'),
        sa.UniqueConstraint('institution_id', 'admission_number', name='uq_enrollment_records_admission_number'),
        sa.UniqueConstraint(
            'institution_id',
            'class_id',
            'section_id',
            'roll_number',
            name='uq_enrollment_records_roll_number',
        ),
    )
    op.create_index('ix_enrollment_records_id', 'enrollment_records', ['id'])
    op.create_index('ix_enrollment_records_institution_id', 'enrollment_records', ['institution_id'])
    op.create_index('ix_enrollment_records_application_id', 'enrollment_records', ['application_id'])
    op.create_index('ix_enrollment_records_class_id', 'enrollment_records', ['class_id'])
    op.create_index('ix_enrollment_records_section_id', 'enrollment_records', ['section_id'])
    op.create_index('ix_enrollment_records_student_account_id', 'enrollment_records', ['student_account_id'])
    op.create_index('ix_enrollment_records_parent_account_id', 'enrollment_records', ['parent_account_id'])
    op.create_index('ix_enrollment_records_enrolled_at', 'enrollment_records', ['enrolled_at'])


def downgrade() -> None:
    op.drop_index('ix_enrollment_records_enrolled_at', table_name='enrollment_records')
    op.drop_index('ix_enrollment_records_parent_account_id', table_name='enrollment_records')
    op.drop_index('ix_enrollment_records_student_account_id', table_name='enrollment_records')
    op.drop_index('ix_enrollment_records_section_id', table_name='enrollment_records')
    op.drop_index('ix_enrollment_records_class_id', table_name='enrollment_records')
    op.drop_index('ix_enrollment_records_application_id', table_name='enrollment_records')
    op.drop_index('ix_enrollment_records_institution_id', table_name='enrollment_records')
    op.drop_index('ix_enrollment_records_id', table_name='enrollment_records')
    op.drop_table('enrollment_records')

    op.drop_index('ix_user_accounts_created_at', table_name='user_accounts')
    op.drop_index('ix_user_accounts_institution_id', table_name='user_accounts')
    op.drop_index('ix_user_accounts_role', table_name='user_accounts')
    op.drop_index('ix_user_accounts_email', table_name='user_accounts')
    op.drop_index('ix_user_accounts_id', table_name='user_accounts')
    op.drop_table('user_accounts')

    op.drop_index('ix_application_status_history_application_id', table_name='application_status_history')
    op.drop_index('ix_application_status_history_id', table_name='application_status_history')
    op.drop_table('application_status_history')

    op.drop_index('ix_admission_applications_institution_status', table_name='admission_applications')
    op.drop_index('ix_admission_applications_created_at', table_name='admission_applications')
    op.drop_index('ix_admission_applications_status', table_name='admission_applications')
    op.drop_index('ix_admission_applications_applying_for_class_id', table_name='admission_applications')
    op.drop_index('ix_admission_applications_application_number', table_name='admission_applications')
    op.drop_index('ix_admission_applications_institution_id', table_name='admission_applications')
    op.drop_index('ix_admission_applications_id', table_name='admission_applications')
    op.drop_table('admission_applications')

    op.drop_index('ix_identifier_counters_kind', table_name='identifier_counters')
    op.drop_index('ix_identifier_counters_institution_id', table_name='identifier_counters')
    op.drop_index('ix_identifier_counters_id', table_name='identifier_counters')
    op.drop_table('identifier_counters')

    op.drop_index('ix_sections_class_id', table_name='sections')
    op.drop_index('ix_sections_id', table_name='sections')
    op.drop_table('sections')

    op.drop_index('ix_school_classes_institution_id', table_name='school_classes')
    op.drop_index('ix_school_classes_id', table_name='school_classes')
    op.drop_table('school_classes')

    op.drop_index('ix_institutions_created_at', table_name='institutions')
    op.drop_index('ix_institutions_slug', table_name='institutions')
    op.drop_index('ix_institutions_id', table_name='institutions')
    op.drop_table('institutions')
