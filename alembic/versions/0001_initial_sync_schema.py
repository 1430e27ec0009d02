"""Initial sync schema.

Revision ID: 0001_initial_sync_schema
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "0001_initial_sync_schema"
down_revision = None
branch_labels = None
depends_on = None


DETAIL_TABLES = (
    "movie_details",
    "tv_details",
    "book_details",
    "place_details",
    "spotify_item_details",
    "recipe_details",
    "gift_details",
)


def _id(**kwargs):
    return sa.Column("id", sa.String(length=36), primary_key=True, **kwargs)


def _fk(name, target, nullable=False):
    return sa.Column(name, sa.String(length=36), sa.ForeignKey(target), nullable=nullable)


def _timestamps(deleted=True, updated=True):
    columns = [sa.Column("created_at", sa.DateTime(timezone=True), nullable=False)]
    if updated:
        columns.append(sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False))
    if deleted:
        columns.append(sa.Column("deleted_at", sa.DateTime(timezone=True)))
    return columns


def upgrade() -> None:
    bind = op.get_bind()
    is_postgres = bind.dialect.name == "postgresql"
    json_type = postgresql.JSONB if is_postgres else sa.JSON

    op.create_table(
        "users",
        _id(),
        sa.Column("username", sa.String(length=100), nullable=False),
        sa.Column("full_name", sa.String(length=255)),
        sa.Column("email", sa.String(length=255)),
        *_timestamps(),
        sa.UniqueConstraint("username", name="uq_users_username"),
    )

    op.create_table(
        "user_settings",
        _id(),
        _fk("user_id", "users.id"),
        sa.Column("theme", sa.String(length=50)),
        sa.Column("locale", sa.String(length=20)),
        sa.Column("default_list_visibility", sa.String(length=20)),
        sa.Column("notification_preferences", json_type),
        sa.Column("privacy_settings", json_type),
        *_timestamps(),
        sa.UniqueConstraint("user_id", name="uq_user_settings_user_id"),
    )

    op.create_table(
        "lists",
        _id(),
        _fk("owner_id", "users.id"),
        sa.Column("title", sa.String(length=500), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("list_type", sa.String(length=50)),
        sa.Column("is_public", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("sort_order", sa.Integer(), server_default="0"),
        sa.Column("icon", sa.String(length=100)),
        sa.Column("background", json_type),
        sa.Column("custom_fields", json_type),
        *_timestamps(),
    )
    op.create_index("ix_lists_owner_id", "lists", ["owner_id"])
    op.create_index("ix_lists_updated_at", "lists", ["updated_at"])

    op.create_table(
        "movie_details",
        _id(),
        sa.Column("list_item_id", sa.String(length=36), nullable=False),
        sa.Column("tmdb_id", sa.Integer()),
        sa.Column("title", sa.String(length=500)),
        sa.Column("tagline", sa.String(length=500)),
        sa.Column("release_date", sa.String(length=20)),
        sa.Column("rating", sa.Float()),
        sa.Column("vote_count", sa.Integer()),
        sa.Column("runtime_minutes", sa.Integer()),
        sa.Column("genres", json_type),
        sa.Column("overview", sa.Text()),
        sa.Column("poster_path", sa.String(length=500)),
        sa.Column("watch_providers", json_type),
        *_timestamps(deleted=False),
    )
    op.create_table(
        "tv_details",
        _id(),
        sa.Column("list_item_id", sa.String(length=36), nullable=False),
        sa.Column("tmdb_id", sa.Integer()),
        sa.Column("first_air_date", sa.String(length=20)),
        sa.Column("rating", sa.Float()),
        sa.Column("genres", json_type),
        sa.Column("number_of_seasons", sa.Integer()),
        sa.Column("number_of_episodes", sa.Integer()),
        sa.Column("original_name", sa.String(length=500)),
        *_timestamps(deleted=False),
    )
    op.create_table(
        "book_details",
        _id(),
        sa.Column("list_item_id", sa.String(length=36), nullable=False),
        sa.Column("google_book_id", sa.String(length=100)),
        sa.Column("authors", json_type),
        sa.Column("publisher", sa.String(length=255)),
        sa.Column("published_date", sa.String(length=20)),
        sa.Column("page_count", sa.Integer()),
        sa.Column("isbn_13", sa.String(length=20)),
        sa.Column("isbn_10", sa.String(length=20)),
        sa.Column("categories", json_type),
        *_timestamps(deleted=False),
    )
    op.create_table(
        "place_details",
        _id(),
        sa.Column("list_item_id", sa.String(length=36), nullable=False),
        sa.Column("google_place_id", sa.String(length=255)),
        sa.Column("address_formatted", sa.Text()),
        sa.Column("phone_number_international", sa.String(length=50)),
        sa.Column("website", sa.String(length=1000)),
        sa.Column("rating_google", sa.Float()),
        sa.Column("latitude", sa.Float()),
        sa.Column("longitude", sa.Float()),
        sa.Column("types", json_type),
        sa.Column("photos", json_type),
        *_timestamps(deleted=False),
    )
    op.create_table(
        "spotify_item_details",
        _id(),
        sa.Column("list_item_id", sa.String(length=36), nullable=False),
        sa.Column("spotify_id", sa.String(length=100)),
        sa.Column("spotify_item_type", sa.String(length=50)),
        sa.Column("artists", json_type),
        sa.Column("album_name", sa.String(length=500)),
        sa.Column("duration_ms", sa.Integer()),
        sa.Column("preview_url", sa.String(length=1000)),
        *_timestamps(deleted=False),
    )
    op.create_table(
        "recipe_details",
        _id(),
        sa.Column("list_item_id", sa.String(length=36), nullable=False),
        sa.Column("title", sa.String(length=500)),
        sa.Column("summary", sa.Text()),
        sa.Column("image_url", sa.String(length=1000)),
        sa.Column("source_url", sa.String(length=1000)),
        sa.Column("servings", sa.Integer()),
        sa.Column("cook_time", sa.Integer()),
        *_timestamps(deleted=False),
    )
    op.create_table(
        "gift_details",
        _id(),
        sa.Column("list_item_id", sa.String(length=36), nullable=False),
        sa.Column("quantity", sa.Integer(), server_default="1"),
        sa.Column("where_to_buy", sa.String(length=500)),
        sa.Column("amazon_url", sa.String(length=1000)),
        sa.Column("web_link", sa.String(length=1000)),
        sa.Column("rating", sa.Integer()),
        *_timestamps(deleted=False),
    )

    op.create_table(
        "list_items",
        _id(),
        _fk("list_id", "lists.id"),
        _fk("owner_id", "users.id"),
        sa.Column("title", sa.String(length=500), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("status", sa.String(length=50)),
        sa.Column("priority", sa.String(length=50)),
        sa.Column("image_url", sa.String(length=1000)),
        sa.Column("link", sa.String(length=1000)),
        sa.Column("price", sa.Numeric(12, 2)),
        sa.Column("sort_order", sa.Integer(), server_default="0"),
        sa.Column("api_source", sa.String(length=50)),
        sa.Column("api_metadata", json_type),
        sa.Column("custom_fields", json_type),
        *[_fk(f"{table[:-1]}_id", f"{table}.id", nullable=True) for table in DETAIL_TABLES],
        *_timestamps(),
    )
    op.create_index("ix_list_items_list_id", "list_items", ["list_id"])
    op.create_index("ix_list_items_owner_id", "list_items", ["owner_id"])

    op.create_table(
        "favorites",
        _id(),
        _fk("user_id", "users.id"),
        sa.Column("target_id", sa.String(length=36), nullable=False),
        sa.Column("target_type", sa.String(length=20), nullable=False),
        sa.Column("notes", sa.Text()),
        sa.Column("sort_order", sa.Integer(), server_default="0"),
        sa.Column("is_public", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
    )
    op.create_index("ix_favorites_user_target", "favorites", ["user_id", "target_id", "target_type"])

    op.create_table(
        "collaboration_groups",
        _id(),
        _fk("owner_id", "users.id"),
        sa.Column("name", sa.String(length=255), nullable=False),
        *_timestamps(),
    )
    op.create_table(
        "collaboration_group_members",
        _id(),
        _fk("group_id", "collaboration_groups.id"),
        _fk("user_id", "users.id"),
        sa.Column("role", sa.String(length=20), nullable=False, server_default="member"),
        *_timestamps(updated=False),
    )
    op.create_index("ix_group_members_user_id", "collaboration_group_members", ["user_id"])
    op.create_table(
        "list_group_roles",
        _id(),
        _fk("list_id", "lists.id"),
        _fk("group_id", "collaboration_groups.id"),
        sa.Column("role", sa.String(length=20), nullable=False),
        *_timestamps(updated=False),
    )
    op.create_index("ix_list_group_roles_group_id", "list_group_roles", ["group_id"])
    op.create_table(
        "list_user_overrides",
        _id(),
        _fk("list_id", "lists.id"),
        _fk("user_id", "users.id"),
        sa.Column("role", sa.String(length=20), nullable=False),
        *_timestamps(updated=False),
    )
    op.create_index("ix_list_user_overrides_user_id", "list_user_overrides", ["user_id"])

    op.create_table(
        "secret_santa_rounds",
        _id(),
        _fk("list_id", "lists.id"),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="draft"),
        _fk("created_by", "users.id"),
        *_timestamps(deleted=False),
    )
    op.create_table(
        "secret_santa_round_participants",
        _id(),
        _fk("round_id", "secret_santa_rounds.id"),
        _fk("user_id", "users.id"),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="confirmed"),
        *_timestamps(deleted=False, updated=False),
        sa.UniqueConstraint("round_id", "user_id", name="uq_secret_santa_participant"),
    )

    op.create_table(
        "gift_reservations",
        _id(),
        _fk("item_id", "list_items.id"),
        _fk("reserved_by", "users.id", nullable=True),
        sa.Column("quantity", sa.Integer(), server_default="1"),
        sa.Column("is_purchased", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("reservation_message", sa.Text()),
        *_timestamps(),
    )
    op.create_index("ix_gift_reservations_item_id", "gift_reservations", ["item_id"])

    op.create_table(
        "change_log",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("table_name", sa.String(length=100), nullable=False),
        sa.Column("record_id", sa.String(length=36), nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("list_id", sa.String(length=36)),
        sa.Column("operation", sa.String(length=20), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("change_data", json_type),
        sa.UniqueConstraint("table_name", "record_id", name="uq_change_log_table_record"),
    )
    op.create_index("ix_change_log_user_created", "change_log", ["user_id", "created_at"])
    op.create_index("ix_change_log_list_created", "change_log", ["list_id", "created_at"])

    op.create_table(
        "embedding_queue",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("entity_id", sa.String(length=36), nullable=False),
        sa.Column("entity_type", sa.String(length=50), nullable=False),
        sa.Column("action", sa.String(length=20), nullable=False, server_default="generate"),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("metadata", json_type),
        *_timestamps(deleted=False),
        sa.UniqueConstraint("entity_id", "entity_type", name="uq_embedding_queue_entity"),
    )
    op.create_index("ix_embedding_queue_status", "embedding_queue", ["status"])


def downgrade() -> None:
    op.drop_index("ix_embedding_queue_status", table_name="embedding_queue")
    op.drop_table("embedding_queue")
    op.drop_index("ix_change_log_list_created", table_name="change_log")
    op.drop_index("ix_change_log_user_created", table_name="change_log")
    op.drop_table("change_log")
    op.drop_index("ix_gift_reservations_item_id", table_name="gift_reservations")
    op.drop_table("gift_reservations")
    op.drop_table("secret_santa_round_participants")
    op.drop_table("secret_santa_rounds")
    op.drop_index("ix_list_user_overrides_user_id", table_name="list_user_overrides")
    op.drop_table("list_user_overrides")
    op.drop_index("ix_list_group_roles_group_id", table_name="list_group_roles")
    op.drop_table("list_group_roles")
    op.drop_index("ix_group_members_user_id", table_name="collaboration_group_members")
    op.drop_table("collaboration_group_members")
    op.drop_table("collaboration_groups")
    op.drop_index("ix_favorites_user_target", table_name="favorites")
    op.drop_table("favorites")
    op.drop_index("ix_list_items_owner_id", table_name="list_items")
    op.drop_index("ix_list_items_list_id", table_name="list_items")
    op.drop_table("list_items")
    for table in reversed(DETAIL_TABLES):
        op.drop_table(table)
    op.drop_index("ix_lists_updated_at", table_name="lists")
    op.drop_index("ix_lists_owner_id", table_name="lists")
    op.drop_table("lists")
    op.drop_table("user_settings")
    op.drop_table("users")
