"""Upload records migration.

Revision ID: 001
Revises:
Create Date: 2026-10-19 00:00:00.000000

Creates the upload_records table holding upload lifecycle and webhook
delivery state.
"""

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "upload_records",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("filename", sa.String(512), nullable=False),
        sa.Column("filesize", sa.BigInteger(), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="uploading"),
        sa.Column("progress", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("stream_url", sa.String(2048), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("packager", sa.String(50), nullable=False, server_default="ffmpeg"),
        sa.Column("storage_path", sa.String(1024), nullable=True),
        sa.Column("callback_url", sa.String(2048), nullable=True),
        sa.Column("callback_status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("callback_retry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("callback_last_attempt", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        op.f("ix_upload_records_status"),
        "upload_records",
        ["status"],
        unique=False,
    )
    # Serves the callback sweep query
    op.create_index(
        "ix_upload_records_callback_sweep",
        "upload_records",
        ["callback_status", "status", "created_at"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_upload_records_callback_sweep", table_name="upload_records")
    op.drop_index(op.f("ix_upload_records_status"), table_name="upload_records")
    op.drop_table("upload_records")
