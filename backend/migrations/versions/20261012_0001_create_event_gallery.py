from __future__ import annotations
from alembic import op
import sqlalchemy as sa

# revision identifiers
revision = "20261012_0001"
down_revision = None
branch_labels = None
depends_on = None

def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(length=64), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("role", sa.String(length=16), nullable=False, server_default="USER"),
        sa.Column("tier", sa.String(length=16), nullable=False, server_default="FREE"),
        sa.Column("storage_used_mb", sa.Float(), nullable=False, server_default="0"),
        sa.Column("storage_limit_mb", sa.Float(), nullable=False, server_default="100"),
        sa.Column("joined_at", sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("studio_name", sa.String(length=120), nullable=True),
        sa.Column("logo_url", sa.Text(), nullable=True),
        sa.Column("watermark_opacity", sa.Float(), nullable=True),
        sa.Column("watermark_size", sa.Integer(), nullable=True),
        sa.Column("watermark_position", sa.String(length=16), nullable=True),
        sa.Column("watermark_offset_x", sa.Integer(), nullable=True),
        sa.Column("watermark_offset_y", sa.Integer(), nullable=True),
        sa.CheckConstraint("role IN ('ADMIN','USER','PHOTOGRAPHER')", name="ck_users_role"),
        sa.CheckConstraint("tier IN ('FREE','BASIC','PRO','STUDIO')", name="ck_users_tier"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "events",
        sa.Column("id", sa.String(length=64), primary_key=True, nullable=False),
        sa.Column("host_id", sa.String(length=64), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("code", sa.String(length=12), nullable=False),
        sa.Column("expires_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_events_host_id", "events", ["host_id"])
    op.create_index("ix_events_code", "events", ["code"], unique=True)

    op.create_table(
        "media",
        sa.Column("id", sa.String(length=64), primary_key=True, nullable=False),
        sa.Column("event_id", sa.String(length=64), sa.ForeignKey("events.id", ondelete="CASCADE"), nullable=False),
        sa.Column("kind", sa.String(length=8), nullable=False),
        sa.Column("processing_state", sa.String(length=8), nullable=False),
        sa.Column("storage_key", sa.Text(), nullable=False),
        sa.Column("preview_key", sa.Text(), nullable=True),
        sa.Column("mime_type", sa.String(length=64), nullable=False),
        sa.Column("size_mb", sa.Float(), nullable=False, server_default="0"),
        sa.Column("content_sha256", sa.String(length=64), nullable=False),
        sa.Column("caption", sa.Text(), nullable=True),
        sa.Column("uploaded_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("uploader_name", sa.String(length=120), nullable=False),
        sa.Column("uploader_identity", sa.String(length=160), nullable=False),
        sa.Column("uploader_user_id", sa.String(length=64), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("visibility", sa.String(length=8), nullable=False, server_default="public"),
        sa.Column("like_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("watermark_applied", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("watermark_text", sa.String(length=120), nullable=True),
        sa.Column("meta_json", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint("kind IN ('image','video')", name="ck_media_kind"),
        sa.CheckConstraint("processing_state IN ('pending','ready')", name="ck_media_processing_state"),
        sa.CheckConstraint("visibility IN ('public','private')", name="ck_media_visibility"),
        sa.CheckConstraint("like_count >= 0", name="ck_media_like_count_nonneg"),
    )
    op.create_index("ix_media_event_id", "media", ["event_id"])
    op.create_index("ix_media_uploader_identity", "media", ["uploader_identity"])
    op.create_index("ix_media_event_uploaded_at", "media", ["event_id", "uploaded_at"])

    op.create_table(
        "comments",
        sa.Column("id", sa.String(length=64), primary_key=True, nullable=False),
        sa.Column("media_id", sa.String(length=64), sa.ForeignKey("media.id", ondelete="CASCADE"), nullable=False),
        sa.Column("event_id", sa.String(length=64), sa.ForeignKey("events.id", ondelete="CASCADE"), nullable=False),
        sa.Column("sender_name", sa.String(length=120), nullable=False),
        sa.Column("text", sa.Text(), nullable=False),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False),
    )
    op.create_index("ix_comments_media_id", "comments", ["media_id"])
    op.create_index("ix_comments_event_id", "comments", ["event_id"])

    op.create_table(
        "guestbook",
        sa.Column("id", sa.String(length=64), primary_key=True, nullable=False),
        sa.Column("event_id", sa.String(length=64), sa.ForeignKey("events.id", ondelete="CASCADE"), nullable=False),
        sa.Column("sender_name", sa.String(length=120), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("created_at", sa.TIMESTAMP(timezone=True), nullable=False),
    )
    op.create_index("ix_guestbook_event_id", "guestbook", ["event_id"])

def downgrade() -> None:
    op.drop_index("ix_guestbook_event_id", table_name="guestbook")
    op.drop_table("guestbook")
    op.drop_index("ix_comments_event_id", table_name="comments")
    op.drop_index("ix_comments_media_id", table_name="comments")
    op.drop_table("comments")
    op.drop_index("ix_media_event_uploaded_at", table_name="media")
    op.drop_index("ix_media_uploader_identity", table_name="media")
    op.drop_index("ix_media_event_id", table_name="media")
    op.drop_table("media")
    op.drop_index("ix_events_code", table_name="events")
    op.drop_index("ix_events_host_id", table_name="events")
    op.drop_table("events")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
