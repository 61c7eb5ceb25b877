"""create results schema

Revision ID: 3c1e7a9d2b40
Revises:
Create Date: 2026-10-16 10:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '3c1e7a9d2b40'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'users',
        sa.Column('user_id', sa.Integer(), primary_key=True),
        sa.Column('username', sa.String(length=128), nullable=False),
        sa.Column('email', sa.String(length=128), nullable=True),
        sa.Column('password_hash', sa.String(length=256), nullable=True),
        sa.Column('role', sa.String(length=32), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('username'),
    )

    op.create_table(
        'activity_logs',
        sa.Column('log_id', sa.Integer(), primary_key=True),
        sa.Column('user_id_fk', sa.Integer(), nullable=True),
        sa.Column('action', sa.String(length=64), nullable=False),
        sa.Column('details', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['user_id_fk'], ['users.user_id']),
    )

    op.create_table(
        'students',
        sa.Column('student_id', sa.Integer(), primary_key=True),
        sa.Column('student_code', sa.String(length=32), nullable=False),
        sa.Column('student_name', sa.String(length=128), nullable=False),
        sa.Column('class_number', sa.Integer(), nullable=False),
        sa.Column('roll_number', sa.Integer(), nullable=True),
        sa.Column('section', sa.String(length=8), nullable=True),
        sa.Column('date_of_birth', sa.Date(), nullable=True),
        sa.Column('father_name', sa.String(length=128), nullable=True),
        sa.Column('mother_name', sa.String(length=128), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('student_code'),
    )

    op.create_table(
        'subjects',
        sa.Column('subject_id', sa.Integer(), primary_key=True),
        sa.Column('subject_name', sa.String(length=128), nullable=False),
        sa.Column('class_number', sa.Integer(), nullable=False),
        sa.Column('full_marks_1', sa.Float(), nullable=True),
        sa.Column('full_marks_2', sa.Float(), nullable=True),
        sa.Column('full_marks_3', sa.Float(), nullable=True),
        sa.Column('display_order', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
    )

    op.create_table(
        'exams',
        sa.Column('exam_id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('academic_year', sa.String(length=16), nullable=False),
        sa.Column('is_deployed', sa.Boolean(), nullable=False, server_default=sa.text('0')),
        sa.Column('deployed_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )

    op.create_table(
        'marks',
        sa.Column('mark_id', sa.Integer(), primary_key=True),
        sa.Column('student_id_fk', sa.Integer(), nullable=False),
        sa.Column('subject_id_fk', sa.Integer(), nullable=False),
        sa.Column('exam_id_fk', sa.Integer(), nullable=False),
        sa.Column('marks_1', sa.String(length=16), nullable=True),
        sa.Column('marks_2', sa.String(length=16), nullable=True),
        sa.Column('marks_3', sa.String(length=16), nullable=True),
        sa.Column('is_locked', sa.Boolean(), nullable=False, server_default=sa.text('0')),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['student_id_fk'], ['students.student_id']),
        sa.ForeignKeyConstraint(['subject_id_fk'], ['subjects.subject_id']),
        sa.ForeignKeyConstraint(['exam_id_fk'], ['exams.exam_id']),
        sa.UniqueConstraint(
            'student_id_fk',
            'subject_id_fk',
            'exam_id_fk',
            name='uq_mark_student_subject_exam',
        ),
    )

    op.create_table(
        'ranks',
        sa.Column('rank_id', sa.Integer(), primary_key=True),
        sa.Column('student_id_fk', sa.Integer(), nullable=False),
        sa.Column('exam_id_fk', sa.Integer(), nullable=False),
        sa.Column('total_marks', sa.Float(), nullable=False, server_default=sa.text('0')),
        sa.Column('percentage', sa.Float(), nullable=False, server_default=sa.text('0')),
        sa.Column('grade', sa.String(length=16), nullable=False, server_default='D'),
        sa.Column('rank', sa.Integer(), nullable=True),
        sa.Column('is_passed', sa.Boolean(), nullable=False, server_default=sa.text('0')),
        sa.Column('has_conflict', sa.Boolean(), nullable=False, server_default=sa.text('0')),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['student_id_fk'], ['students.student_id']),
        sa.ForeignKeyConstraint(['exam_id_fk'], ['exams.exam_id']),
        sa.UniqueConstraint('student_id_fk', 'exam_id_fk', name='uq_rank_student_exam'),
    )


def downgrade():
    op.drop_table('ranks')
    op.drop_table('marks')
    op.drop_table('exams')
    op.drop_table('subjects')
    op.drop_table('students')
    op.drop_table('activity_logs')
    op.drop_table('users')
