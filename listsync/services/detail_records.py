"""
Typed detail records attached to list items.

Each source kind maps to a detail table, the foreign-key column on
list_items that points at it, and a column -> source-path mapping. The
mapping is resolved once when an item is first synced with a kind.
"""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy.orm import Session

import listsync.config as config
from listsync.models import (
    BookDetail,
    GiftDetail,
    ListItem,
    MovieDetail,
    PlaceDetail,
    RecipeDetail,
    SpotifyItemDetail,
    TvDetail,
)
from listsync.timestamps import utcnow


@dataclass(frozen=True)
class DetailKind:
    name: str
    model: type
    fk_column: str
    field_map: dict


DETAIL_KINDS: dict[str, DetailKind] = {
    "movie": DetailKind(
        name="movie",
        model=MovieDetail,
        fk_column="movie_detail_id",
        field_map={
            "tmdb_id": "source_id",
            "title": "title",
            "tagline": "subtitle",
            "release_date": "release_date",
            "rating": "raw_details.vote_average",
            "vote_count": "raw_details.vote_count",
            "runtime_minutes": "raw_details.runtime",
            "genres": "raw_details.genres",
            "overview": "raw_details.overview",
            "poster_path": "raw_details.poster_path",
            "watch_providers": "raw_details.watch_providers",
        },
    ),
    "tv": DetailKind(
        name="tv",
        model=TvDetail,
        fk_column="tv_detail_id",
        field_map={
            "tmdb_id": "source_id",
            "first_air_date": "release_date",
            "rating": "raw_details.vote_average",
            "genres": "raw_details.genres",
            "number_of_seasons": "raw_details.number_of_seasons",
            "number_of_episodes": "raw_details.number_of_episodes",
            "original_name": "raw_details.original_name",
        },
    ),
    "book": DetailKind(
        name="book",
        model=BookDetail,
        fk_column="book_detail_id",
        field_map={
            "google_book_id": "source_id",
            "authors": "raw_details.authors",
            "publisher": "raw_details.publisher",
            "published_date": "raw_details.publishedDate",
            "page_count": "raw_details.pageCount",
            "isbn_13": "raw_details.industryIdentifiers.ISBN_13",
            "isbn_10": "raw_details.industryIdentifiers.ISBN_10",
            "categories": "raw_details.categories",
        },
    ),
    "place": DetailKind(
        name="place",
        model=PlaceDetail,
        fk_column="place_detail_id",
        field_map={
            "google_place_id": "source_id",
            "address_formatted": "raw_details.formatted_address",
            "phone_number_international": "raw_details.international_phone_number",
            "website": "raw_details.website",
            "rating_google": "raw_details.rating",
            "latitude": "raw_details.geometry.location.lat",
            "longitude": "raw_details.geometry.location.lng",
            "types": "raw_details.types",
            "photos": "raw_details.photos",
        },
    ),
    "spotify_item": DetailKind(
        name="spotify_item",
        model=SpotifyItemDetail,
        fk_column="spotify_item_detail_id",
        field_map={
            "spotify_id": "source_id",
            "spotify_item_type": "raw_details.type",
            "artists": "raw_details.artists",
            "album_name": "raw_details.album.name",
            "duration_ms": "raw_details.duration_ms",
            "preview_url": "raw_details.preview_url",
        },
    ),
    "recipe": DetailKind(
        name="recipe",
        model=RecipeDetail,
        fk_column="recipe_detail_id",
        field_map={
            "title": "title",
            "summary": "raw_details.summary",
            "image_url": "image_url",
            "source_url": "raw_details.sourceUrl",
            "servings": "raw_details.servings",
            "cook_time": "raw_details.readyInMinutes",
        },
    ),
    "gift": DetailKind(
        name="gift",
        model=GiftDetail,
        fk_column="gift_detail_id",
        field_map={
            "quantity": "quantity",
            "where_to_buy": "where_to_buy",
            "amazon_url": "amazon_url",
            "web_link": "web_link",
            "rating": "rating",
        },
    ),
}

# Tags seen on the wire, normalised to a kind
KIND_ALIASES = {
    "movie": "movie",
    "movies": "movie",
    "tv": "tv",
    "tv_show": "tv",
    "tv_shows": "tv",
    "book": "book",
    "books": "book",
    "google_books": "book",
    "place": "place",
    "places": "place",
    "google_places": "place",
    "spotify": "spotify_item",
    "spotify_item": "spotify_item",
    "music": "spotify_item",
    "recipe": "recipe",
    "recipes": "recipe",
    "spoonacular": "recipe",
    "gift": "gift",
    "gifts": "gift",
}


def normalize_kind(tag: Any) -> Optional[str]:
    if not isinstance(tag, str):
        return None
    return KIND_ALIASES.get(tag.strip().lower())


def derive_source_kind(payload: dict, parent_list_type: Optional[str]) -> Optional[str]:
    """Explicit item tag first, then the item's api_source, then the parent list's type."""
    for key in ("type", "item_type", "api_source"):
        kind = normalize_kind(payload.get(key))
        if kind:
            return kind
    if payload.get("api_source") == "tmdb":
        metadata = _load_metadata(payload.get("api_metadata"))
        return "tv" if metadata.get("media_type") == "tv" else "movie"
    return normalize_kind(parent_list_type)


def _load_metadata(value: Any) -> dict:
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError:
            return {}
    if not isinstance(value, dict):
        return {}
    metadata = dict(value)
    if "rawDetails" in metadata and "raw_details" not in metadata:
        metadata["raw_details"] = metadata["rawDetails"]
    raw = metadata.get("raw_details")
    if isinstance(raw, dict) and not metadata.get("source_id") and raw.get("place_id"):
        metadata["source_id"] = raw["place_id"]
    return metadata


def _nested(source: Any, path: str) -> Any:
    current = source
    for part in path.split("."):
        if not isinstance(current, dict):
            return None
        current = current.get(part)
    return current


def _isbn_lookup(metadata: dict) -> None:
    raw = metadata.get("raw_details")
    if not isinstance(raw, dict):
        return
    identifiers = raw.get("industryIdentifiers")
    if isinstance(identifiers, list):
        raw["industryIdentifiers"] = {
            entry.get("type"): entry.get("identifier")
            for entry in identifiers
            if isinstance(entry, dict) and entry.get("type")
        }


def build_detail_values(kind: DetailKind, api_metadata: Any, item_payload: dict) -> dict:
    """Resolve mapped columns from API metadata, falling back to the item payload."""
    metadata = _load_metadata(api_metadata)
    _isbn_lookup(metadata)
    values: dict = {}
    for column, path in kind.field_map.items():
        value = _nested(metadata, path)
        if value is None:
            value = _nested(item_payload, path)
        if value is None:
            continue
        if column == "genres" and isinstance(value, list):
            value = [g.get("name") if isinstance(g, dict) else g for g in value]
            value = [g for g in value if g]
        elif column == "photos" and isinstance(value, list):
            value = [
                p.get("photo_reference") or p.get("reference") if isinstance(p, dict) else p
                for p in value
            ]
            value = [p for p in value if p]
        elif column == "artists" and isinstance(value, list):
            value = [a.get("name") if isinstance(a, dict) else a for a in value]
        elif column == "tmdb_id":
            try:
                value = int(value)
            except (TypeError, ValueError):
                continue
        elif column == "google_book_id" or column == "spotify_id":
            value = str(value)
        values[column] = value
    return values


def attach_detail_record(db: Session, item: ListItem, kind_name: str, payload: dict) -> Optional[str]:
    """Create the item's detail row on first sight, or refresh it when one exists."""
    kind = DETAIL_KINDS.get(kind_name)
    if kind is None:
        return None
    values = build_detail_values(kind, payload.get("api_metadata", item.api_metadata), payload)
    existing_id = getattr(item, kind.fk_column)
    detail = db.get(kind.model, existing_id) if existing_id else None
    now = utcnow()
    if detail is None:
        detail = kind.model(id=str(uuid.uuid4()), list_item_id=item.id, created_at=now, updated_at=now, **values)
        db.add(detail)
        db.flush()
        setattr(item, kind.fk_column, detail.id)
        config.logger.info(f"Created {kind.model.__tablename__} record {detail.id} for item {item.id}")
    elif values:
        for column, value in values.items():
            setattr(detail, column, value)
        detail.updated_at = now
    return detail.id
