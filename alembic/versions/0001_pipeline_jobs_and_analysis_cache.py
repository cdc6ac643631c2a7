"""Pipeline jobs and video analysis cache"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "0001_pipeline_jobs_and_analysis_cache"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "pipeline_jobs",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("status", sa.String(length=32), nullable=False, server_default=sa.text("'queued'")),
        sa.Column("source_page_id", sa.Text(), nullable=False),
        sa.Column("deliverable_name", sa.Text(), nullable=False),
        sa.Column("asset_link", sa.Text(), nullable=False),
        sa.Column("angle", sa.Text(), nullable=True),
        sa.Column("format", sa.Text(), nullable=True),
        sa.Column("messenger", sa.Text(), nullable=True),
        sa.Column("media_type", sa.Text(), nullable=True),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("copy_revised", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("analysis_cached", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("staged_path", sa.Text(), nullable=True),
        sa.Column("primary_text", sa.Text(), nullable=True),
        sa.Column("headline", sa.Text(), nullable=True),
        sa.Column("review", sa.JSON(), nullable=False),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("duration_ms", sa.Integer(), nullable=True),
    )
    op.create_index("idx_pipeline_jobs_status", "pipeline_jobs", ["status"])
    op.create_index("idx_pipeline_jobs_source_page", "pipeline_jobs", ["source_page_id"])

    op.create_table(
        "video_analysis_cache",
        sa.Column("cache_key", sa.Text(), primary_key=True),
        sa.Column("row_id", sa.Text(), nullable=True),
        sa.Column("staged_path", sa.Text(), nullable=False),
        sa.Column("analysis", sa.JSON(), nullable=False),
        sa.Column("hit_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("idx_video_analysis_cache_expires_at", "video_analysis_cache", ["expires_at"])


def downgrade() -> None:
    op.drop_index("idx_video_analysis_cache_expires_at", table_name="video_analysis_cache")
    op.drop_table("video_analysis_cache")
    op.drop_index("idx_pipeline_jobs_source_page", table_name="pipeline_jobs")
    op.drop_index("idx_pipeline_jobs_status", table_name="pipeline_jobs")
    op.drop_table("pipeline_jobs")
