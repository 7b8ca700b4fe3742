"""initial schema

Revision ID: a1b2c3d4e5f6
Revises:
Create Date: 2026-10-17 12:00:00.000000

Hey future me - this is the WHOLE sync schema in one go:

- servers: configured Jellyfin servers + last sync state
- libraries / users: mirrored 1:1 from Jellyfin
- items: every item incl. soft delete (deleted_at) and people_synced_at for the resumable
  people backfill
- activities: activity log; user_id is SET NULL on user delete, item_id has NO FK (log
  entries outlive items)
- sessions / hidden_recommendations: owned by other jobs, sync only REWRITES their item_id
  during re-identification
- people / item_people: credits, person ids are unique per server only

INDEXES:
- ix_items_server_deleted: active-item queries (deleted_at IS NULL) per server
- ix_items_server_type: type filters
- ix_activities_server_date: watermark lookup (newest activity per server)
"""

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision = "a1b2c3d4e5f6"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps(updated: bool = True) -> list[sa.Column]:
    columns = [sa.Column("created_at", sa.DateTime(timezone=True), nullable=False)]
    if updated:
        columns.append(sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False))
    return columns


def _server_fk(primary_key: bool = False) -> sa.Column:
    return sa.Column(
        "server_id",
        sa.Integer(),
        sa.ForeignKey("servers.id", ondelete="CASCADE"),
        nullable=False,
        primary_key=primary_key,
    )


def upgrade() -> None:
    op.create_table(
        "servers",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("url", sa.String(512), nullable=False),
        sa.Column("api_key", sa.String(255), nullable=False),
        sa.Column("sync_status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("sync_type", sa.String(40), nullable=True),
        sa.Column("sync_error", sa.Text(), nullable=True),
        sa.Column("last_sync_started", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_sync_completed", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "libraries",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("type", sa.String(40), nullable=False),
        _server_fk(),
        *_timestamps(),
    )
    op.create_index("ix_libraries_server_id", "libraries", ["server_id"])

    op.create_table(
        "users",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        _server_fk(),
        sa.Column("has_password", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_administrator", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_disabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_hidden", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("primary_image_tag", sa.String(64), nullable=True),
        sa.Column("last_login_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_activity_date", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_users_server_id", "users", ["server_id"])

    op.create_table(
        "activities",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("short_overview", sa.Text(), nullable=True),
        sa.Column("type", sa.String(100), nullable=False),
        sa.Column("date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("severity", sa.String(40), nullable=True),
        _server_fk(),
        sa.Column(
            "user_id",
            sa.String(64),
            sa.ForeignKey("users.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("item_id", sa.String(64), nullable=True),
        *_timestamps(updated=False),
    )
    op.create_index("ix_activities_server_date", "activities", ["server_id", "date"])

    op.create_table(
        "items",
        sa.Column("id", sa.String(64), primary_key=True),
        _server_fk(),
        sa.Column(
            "library_id",
            sa.String(64),
            sa.ForeignKey("libraries.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("type", sa.String(40), nullable=False),
        sa.Column("original_title", sa.Text(), nullable=True),
        sa.Column("etag", sa.String(64), nullable=True),
        sa.Column("date_created", sa.DateTime(timezone=True), nullable=True),
        sa.Column("container", sa.String(40), nullable=True),
        sa.Column("sort_name", sa.Text(), nullable=True),
        sa.Column("premiere_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("path", sa.Text(), nullable=True),
        sa.Column("official_rating", sa.String(40), nullable=True),
        sa.Column("overview", sa.Text(), nullable=True),
        sa.Column("community_rating", sa.Float(), nullable=True),
        sa.Column("runtime_ticks", sa.BigInteger(), nullable=True),
        sa.Column("production_year", sa.Integer(), nullable=True),
        sa.Column("is_folder", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("parent_id", sa.String(64), nullable=True),
        sa.Column("media_type", sa.String(40), nullable=True),
        sa.Column("width", sa.Integer(), nullable=True),
        sa.Column("height", sa.Integer(), nullable=True),
        # === Hierarchy ===
        sa.Column("series_name", sa.Text(), nullable=True),
        sa.Column("series_id", sa.String(64), nullable=True),
        sa.Column("season_id", sa.String(64), nullable=True),
        sa.Column("season_name", sa.Text(), nullable=True),
        sa.Column("index_number", sa.Integer(), nullable=True),
        sa.Column("parent_index_number", sa.Integer(), nullable=True),
        # === Images ===
        sa.Column("primary_image_aspect_ratio", sa.Float(), nullable=True),
        sa.Column("primary_image_tag", sa.String(64), nullable=True),
        sa.Column("series_primary_image_tag", sa.String(64), nullable=True),
        sa.Column("primary_image_thumb_tag", sa.String(64), nullable=True),
        sa.Column("primary_image_logo_tag", sa.String(64), nullable=True),
        sa.Column("parent_thumb_item_id", sa.String(64), nullable=True),
        sa.Column("parent_thumb_image_tag", sa.String(64), nullable=True),
        sa.Column("parent_logo_item_id", sa.String(64), nullable=True),
        sa.Column("parent_logo_image_tag", sa.String(64), nullable=True),
        sa.Column("backdrop_image_tags", sa.JSON(), nullable=True),
        sa.Column("parent_backdrop_item_id", sa.String(64), nullable=True),
        sa.Column("parent_backdrop_image_tags", sa.JSON(), nullable=True),
        sa.Column("image_blur_hashes", sa.JSON(), nullable=True),
        sa.Column("image_tags", sa.JSON(), nullable=True),
        sa.Column("can_delete", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("can_download", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("play_access", sa.String(20), nullable=True),
        sa.Column("is_hd", sa.Boolean(), nullable=False, server_default=sa.false()),
        # === Metadata ===
        sa.Column("provider_ids", sa.JSON(), nullable=True),
        sa.Column("tags", sa.JSON(), nullable=True),
        sa.Column("genres", sa.JSON(), nullable=True),
        sa.Column("series_studio", sa.Text(), nullable=True),
        sa.Column("video_type", sa.String(40), nullable=True),
        sa.Column("has_subtitles", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("channel_id", sa.String(64), nullable=True),
        sa.Column("location_type", sa.String(40), nullable=True),
        sa.Column("raw_data", sa.JSON(), nullable=False),
        sa.Column("processed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("people_synced_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_items_library_id", "items", ["library_id"])
    op.create_index("ix_items_server_deleted", "items", ["server_id", "deleted_at"])
    op.create_index("ix_items_server_type", "items", ["server_id", "type"])

    op.create_table(
        "sessions",
        sa.Column("id", sa.String(64), primary_key=True),
        _server_fk(),
        sa.Column("user_id", sa.String(64), nullable=True),
        sa.Column("user_name", sa.String(255), nullable=True),
        sa.Column(
            "item_id",
            sa.String(64),
            sa.ForeignKey("items.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("item_name", sa.Text(), nullable=True),
        sa.Column("client_name", sa.String(255), nullable=True),
        sa.Column("device_name", sa.String(255), nullable=True),
        sa.Column("play_duration", sa.Integer(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("ended_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(updated=False),
    )
    op.create_index("ix_sessions_item_id", "sessions", ["item_id"])

    op.create_table(
        "hidden_recommendations",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        _server_fk(),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column(
            "item_id",
            sa.String(64),
            sa.ForeignKey("items.id", ondelete="CASCADE"),
            nullable=False,
        ),
        *_timestamps(updated=False),
    )
    op.create_index(
        "ix_hidden_recommendations_item_id", "hidden_recommendations", ["item_id"]
    )

    op.create_table(
        "people",
        sa.Column("id", sa.String(64), primary_key=True),
        _server_fk(primary_key=True),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("primary_image_tag", sa.String(64), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "item_people",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "item_id",
            sa.String(64),
            sa.ForeignKey("items.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("person_id", sa.String(64), nullable=False),
        _server_fk(),
        sa.Column("type", sa.String(40), nullable=False, server_default="Unknown"),
        sa.Column("role", sa.Text(), nullable=True),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
        sa.UniqueConstraint("item_id", "person_id", "type", name="uq_item_people"),
    )
    op.create_index("ix_item_people_item_id", "item_people", ["item_id"])


def downgrade() -> None:
    op.drop_index("ix_item_people_item_id", table_name="item_people")
    op.drop_table("item_people")
    op.drop_table("people")
    op.drop_index("ix_hidden_recommendations_item_id", table_name="hidden_recommendations")
    op.drop_table("hidden_recommendations")
    op.drop_index("ix_sessions_item_id", table_name="sessions")
    op.drop_table("sessions")
    op.drop_index("ix_items_server_type", table_name="items")
    op.drop_index("ix_items_server_deleted", table_name="items")
    op.drop_index("ix_items_library_id", table_name="items")
    op.drop_table("items")
    op.drop_index("ix_activities_server_date", table_name="activities")
    op.drop_table("activities")
    op.drop_index("ix_users_server_id", table_name="users")
    op.drop_table("users")
    op.drop_index("ix_libraries_server_id", table_name="libraries")
    op.drop_table("libraries")
    op.drop_table("servers")
