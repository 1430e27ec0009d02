import pytest

from listsync.services.detail_records import DETAIL_KINDS, build_detail_values, derive_source_kind


@pytest.mark.parametrize(
    "payload, parent_type, expected",
    [
        ({"type": "Books"}, "movies", "book"),
        ({"item_type": "recipe"}, None, "recipe"),
        ({"api_source": "google_places"}, None, "place"),
        ({"api_source": "tmdb", "api_metadata": {"media_type": "tv"}}, None, "tv"),
        ({"api_source": "tmdb", "api_metadata": '{"media_type": "movie"}'}, None, "movie"),
        ({}, "gifts", "gift"),
        ({}, "todo", None),
    ],
)
def test_source_kind_resolution(payload, parent_type, expected):
    assert derive_source_kind(payload, parent_type) == expected


def test_book_values_flatten_industry_identifiers():
    values = build_detail_values(
        DETAIL_KINDS["book"],
        {
            "source_id": 12345,
            "raw_details": {
                "authors": ["Ursula K. Le Guin"],
                "industryIdentifiers": [
                    {"type": "ISBN_13", "identifier": "9780441478125"},
                    {"type": "ISBN_10", "identifier": "0441478123"},
                ],
            },
        },
        {},
    )

    assert values["google_book_id"] == "12345"
    assert values["authors"] == ["Ursula K. Le Guin"]
    assert values["isbn_13"] == "9780441478125"
    assert values["isbn_10"] == "0441478123"


def test_place_values_fall_back_to_place_id_and_photo_references():
    values = build_detail_values(
        DETAIL_KINDS["place"],
        {"rawDetails": {"place_id": "abc", "photos": [{"photo_reference": "p1"}, {"width": 10}]}},
        {},
    )

    assert values["google_place_id"] == "abc"
    assert values["photos"] == ["p1"]


def test_gift_values_come_from_the_item_payload():
    values = build_detail_values(DETAIL_KINDS["gift"], None, {"quantity": 3, "amazon_url": "https://a.example"})

    assert values == {"quantity": 3, "amazon_url": "https://a.example"}
