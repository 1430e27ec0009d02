"""
ListSync Database Models
Relational store shared by every syncing client.
"""

from sqlalchemy import (
    Column, Integer, String, Text, Float, Boolean, Numeric,
    DateTime, ForeignKey, Index, UniqueConstraint, JSON
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base

import listsync.config as config
from listsync.timestamps import utcnow

DB_BACKEND_EFFECTIVE = config.DB_BACKEND_EFFECTIVE

JSON_TYPE = JSONB if DB_BACKEND_EFFECTIVE == "postgres" else JSON
ID_TYPE = String(36)


Base = declarative_base()


# =============================================================================
# Users
# =============================================================================

class User(Base):
    __tablename__ = "users"

    id = Column(ID_TYPE, primary_key=True)
    username = Column(String(100), nullable=False)
    full_name = Column(String(255))
    email = Column(String(255))
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)
    deleted_at = Column(DateTime(timezone=True))

    __table_args__ = (
        UniqueConstraint("username", name="uq_users_username"),
    )


class UserSettings(Base):
    __tablename__ = "user_settings"

    id = Column(ID_TYPE, primary_key=True)
    user_id = Column(ID_TYPE, ForeignKey("users.id"), nullable=False)
    theme = Column(String(50))
    locale = Column(String(20))
    default_list_visibility = Column(String(20))
    notification_preferences = Column(JSON_TYPE, default=dict)
    privacy_settings = Column(JSON_TYPE, default=dict)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    deleted_at = Column(DateTime(timezone=True))

    __table_args__ = (
        UniqueConstraint("user_id", name="uq_user_settings_user_id"),
    )


# =============================================================================
# Lists and items
# =============================================================================

class List(Base):
    __tablename__ = "lists"

    id = Column(ID_TYPE, primary_key=True)
    owner_id = Column(ID_TYPE, ForeignKey("users.id"), nullable=False)
    title = Column(String(500), nullable=False)
    description = Column(Text)
    list_type = Column(String(50))
    is_public = Column(Boolean, default=False, nullable=False)
    sort_order = Column(Integer, default=0)
    icon = Column(String(100))
    background = Column(JSON_TYPE)
    custom_fields = Column(JSON_TYPE)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    deleted_at = Column(DateTime(timezone=True))

    __table_args__ = (
        Index("ix_lists_owner_id", "owner_id"),
        Index("ix_lists_updated_at", "updated_at"),
    )


class ListItem(Base):
    __tablename__ = "list_items"

    id = Column(ID_TYPE, primary_key=True)
    list_id = Column(ID_TYPE, ForeignKey("lists.id"), nullable=False)
    owner_id = Column(ID_TYPE, ForeignKey("users.id"), nullable=False)
    title = Column(String(500), nullable=False)
    description = Column(Text)
    status = Column(String(50))
    priority = Column(String(50))
    image_url = Column(String(1000))
    link = Column(String(1000))
    price = Column(Numeric(12, 2))
    sort_order = Column(Integer, default=0)
    api_source = Column(String(50))
    api_metadata = Column(JSON_TYPE)
    custom_fields = Column(JSON_TYPE)
    movie_detail_id = Column(ID_TYPE, ForeignKey("movie_details.id"))
    tv_detail_id = Column(ID_TYPE, ForeignKey("tv_details.id"))
    book_detail_id = Column(ID_TYPE, ForeignKey("book_details.id"))
    place_detail_id = Column(ID_TYPE, ForeignKey("place_details.id"))
    spotify_item_detail_id = Column(ID_TYPE, ForeignKey("spotify_item_details.id"))
    recipe_detail_id = Column(ID_TYPE, ForeignKey("recipe_details.id"))
    gift_detail_id = Column(ID_TYPE, ForeignKey("gift_details.id"))
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    deleted_at = Column(DateTime(timezone=True))

    __table_args__ = (
        Index("ix_list_items_list_id", "list_id"),
        Index("ix_list_items_owner_id", "owner_id"),
    )


class Favorite(Base):
    __tablename__ = "favorites"

    id = Column(ID_TYPE, primary_key=True)
    user_id = Column(ID_TYPE, ForeignKey("users.id"), nullable=False)
    target_id = Column(ID_TYPE, nullable=False)
    target_type = Column(String(20), nullable=False)  # "list" | "list_item"
    notes = Column(Text)
    sort_order = Column(Integer, default=0)
    is_public = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    deleted_at = Column(DateTime(timezone=True))

    __table_args__ = (
        Index("ix_favorites_user_target", "user_id", "target_id", "target_type"),
    )


# =============================================================================
# Detail records (one per typed list item)
# =============================================================================

class MovieDetail(Base):
    __tablename__ = "movie_details"

    id = Column(ID_TYPE, primary_key=True)
    list_item_id = Column(ID_TYPE, nullable=False)
    tmdb_id = Column(Integer)
    title = Column(String(500))
    tagline = Column(String(500))
    release_date = Column(String(20))
    rating = Column(Float)
    vote_count = Column(Integer)
    runtime_minutes = Column(Integer)
    genres = Column(JSON_TYPE)
    overview = Column(Text)
    poster_path = Column(String(500))
    watch_providers = Column(JSON_TYPE)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class TvDetail(Base):
    __tablename__ = "tv_details"

    id = Column(ID_TYPE, primary_key=True)
    list_item_id = Column(ID_TYPE, nullable=False)
    tmdb_id = Column(Integer)
    first_air_date = Column(String(20))
    rating = Column(Float)
    genres = Column(JSON_TYPE)
    number_of_seasons = Column(Integer)
    number_of_episodes = Column(Integer)
    original_name = Column(String(500))
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class BookDetail(Base):
    __tablename__ = "book_details"

    id = Column(ID_TYPE, primary_key=True)
    list_item_id = Column(ID_TYPE, nullable=False)
    google_book_id = Column(String(100))
    authors = Column(JSON_TYPE)
    publisher = Column(String(255))
    published_date = Column(String(20))
    page_count = Column(Integer)
    isbn_13 = Column(String(20))
    isbn_10 = Column(String(20))
    categories = Column(JSON_TYPE)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class PlaceDetail(Base):
    __tablename__ = "place_details"

    id = Column(ID_TYPE, primary_key=True)
    list_item_id = Column(ID_TYPE, nullable=False)
    google_place_id = Column(String(255))
    address_formatted = Column(Text)
    phone_number_international = Column(String(50))
    website = Column(String(1000))
    rating_google = Column(Float)
    latitude = Column(Float)
    longitude = Column(Float)
    types = Column(JSON_TYPE)
    photos = Column(JSON_TYPE)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class SpotifyItemDetail(Base):
    __tablename__ = "spotify_item_details"

    id = Column(ID_TYPE, primary_key=True)
    list_item_id = Column(ID_TYPE, nullable=False)
    spotify_id = Column(String(100))
    spotify_item_type = Column(String(50))
    artists = Column(JSON_TYPE)
    album_name = Column(String(500))
    duration_ms = Column(Integer)
    preview_url = Column(String(1000))
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class RecipeDetail(Base):
    __tablename__ = "recipe_details"

    id = Column(ID_TYPE, primary_key=True)
    list_item_id = Column(ID_TYPE, nullable=False)
    title = Column(String(500))
    summary = Column(Text)
    image_url = Column(String(1000))
    source_url = Column(String(1000))
    servings = Column(Integer)
    cook_time = Column(Integer)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class GiftDetail(Base):
    __tablename__ = "gift_details"

    id = Column(ID_TYPE, primary_key=True)
    list_item_id = Column(ID_TYPE, nullable=False)
    quantity = Column(Integer, default=1)
    where_to_buy = Column(String(500))
    amazon_url = Column(String(1000))
    web_link = Column(String(1000))
    rating = Column(Integer)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


# =============================================================================
# Sharing model (read-only inputs for access resolution)
# =============================================================================

class CollaborationGroup(Base):
    __tablename__ = "collaboration_groups"

    id = Column(ID_TYPE, primary_key=True)
    owner_id = Column(ID_TYPE, ForeignKey("users.id"), nullable=False)
    name = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    deleted_at = Column(DateTime(timezone=True))


class CollaborationGroupMember(Base):
    __tablename__ = "collaboration_group_members"

    id = Column(ID_TYPE, primary_key=True)
    group_id = Column(ID_TYPE, ForeignKey("collaboration_groups.id"), nullable=False)
    user_id = Column(ID_TYPE, ForeignKey("users.id"), nullable=False)
    role = Column(String(20), default="member", nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    deleted_at = Column(DateTime(timezone=True))

    __table_args__ = (
        Index("ix_group_members_user_id", "user_id"),
    )


class ListGroupRole(Base):
    __tablename__ = "list_group_roles"

    id = Column(ID_TYPE, primary_key=True)
    list_id = Column(ID_TYPE, ForeignKey("lists.id"), nullable=False)
    group_id = Column(ID_TYPE, ForeignKey("collaboration_groups.id"), nullable=False)
    role = Column(String(20), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    deleted_at = Column(DateTime(timezone=True))

    __table_args__ = (
        Index("ix_list_group_roles_group_id", "group_id"),
    )


class ListUserOverride(Base):
    __tablename__ = "list_user_overrides"

    id = Column(ID_TYPE, primary_key=True)
    list_id = Column(ID_TYPE, ForeignKey("lists.id"), nullable=False)
    user_id = Column(ID_TYPE, ForeignKey("users.id"), nullable=False)
    role = Column(String(20), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    deleted_at = Column(DateTime(timezone=True))

    __table_args__ = (
        Index("ix_list_user_overrides_user_id", "user_id"),
    )


class SecretSantaRound(Base):
    __tablename__ = "secret_santa_rounds"

    id = Column(ID_TYPE, primary_key=True)
    list_id = Column(ID_TYPE, ForeignKey("lists.id"), nullable=False)
    status = Column(String(20), default="draft", nullable=False)  # draft | active | closed
    created_by = Column(ID_TYPE, ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class SecretSantaParticipant(Base):
    __tablename__ = "secret_santa_round_participants"

    id = Column(ID_TYPE, primary_key=True)
    round_id = Column(ID_TYPE, ForeignKey("secret_santa_rounds.id"), nullable=False)
    user_id = Column(ID_TYPE, ForeignKey("users.id"), nullable=False)
    status = Column(String(20), default="confirmed", nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("round_id", "user_id", name="uq_secret_santa_participant"),
    )


class GiftReservation(Base):
    __tablename__ = "gift_reservations"

    id = Column(ID_TYPE, primary_key=True)
    item_id = Column(ID_TYPE, ForeignKey("list_items.id"), nullable=False)
    reserved_by = Column(ID_TYPE, ForeignKey("users.id"))
    quantity = Column(Integer, default=1)
    is_purchased = Column(Boolean, default=False, nullable=False)
    reservation_message = Column(Text)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    deleted_at = Column(DateTime(timezone=True))

    __table_args__ = (
        Index("ix_gift_reservations_item_id", "item_id"),
    )


# =============================================================================
# Change log and side-effect queue
# =============================================================================

class ChangeLogEntry(Base):
    __tablename__ = "change_log"

    id = Column(Integer, primary_key=True, autoincrement=True)
    table_name = Column(String(100), nullable=False)
    record_id = Column(ID_TYPE, nullable=False)
    user_id = Column(ID_TYPE, nullable=False)
    list_id = Column(ID_TYPE)
    operation = Column(String(20), nullable=False)  # create | update | delete
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    change_data = Column(JSON_TYPE)

    __table_args__ = (
        UniqueConstraint("table_name", "record_id", name="uq_change_log_table_record"),
        Index("ix_change_log_user_created", "user_id", "created_at"),
        Index("ix_change_log_list_created", "list_id", "created_at"),
    )


class EmbeddingQueueEntry(Base):
    __tablename__ = "embedding_queue"

    id = Column(Integer, primary_key=True, autoincrement=True)
    entity_id = Column(ID_TYPE, nullable=False)
    entity_type = Column(String(50), nullable=False)
    action = Column(String(20), default="generate", nullable=False)  # generate | deactivate
    status = Column(String(20), default="pending", nullable=False)
    retry_count = Column(Integer, default=0, nullable=False)
    metadata_ = Column("metadata", JSON_TYPE, default=dict)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("entity_id", "entity_type", name="uq_embedding_queue_entity"),
        Index("ix_embedding_queue_status", "status"),
    )


DETAIL_MODELS = {
    model.__tablename__: model
    for model in (
        MovieDetail,
        TvDetail,
        BookDetail,
        PlaceDetail,
        SpotifyItemDetail,
        RecipeDetail,
        GiftDetail,
    )
}
