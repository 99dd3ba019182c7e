"""
Tests for search preferences, form constants and platform names.
"""

from datetime import date

import pytest

from modules.catalog import form_options, genre_ids_for, genre_names, mood_keywords
from modules.platforms import extract_platforms, normalize_platform_name, normalize_platforms
from modules.preferences import PreferenceError, SearchPreferences, validate


def prefs(**fields):
    base = {"content_type": "movie", "genres": ["Action"]}
    base.update(fields)
    return SearchPreferences.from_dict(base)


def test_from_dict_nested_ranges():
    p = SearchPreferences.from_dict({
        "content_type": "Movies",
        "moods": ["Happy"],
        "year_range": {"from": 1990, "to": 2000},
        "rating_range": {"min": 6, "max": 9},
        "services": ["netflix", "Prime Video", "Unknown+"],
    })

    assert p.content_type == "movie"
    assert (p.year_from, p.year_to) == (1990, 2000)
    assert (p.rating_min, p.rating_max) == (6.0, 9.0)
    assert p.services == ["Netflix", "Amazon Prime"]


def test_from_dict_defaults():
    p = SearchPreferences.from_dict({"content_type": "tv series", "genres": "Drama, Crime"})

    assert p.content_type == "tv"
    assert p.genres == ["Drama", "Crime"]
    assert p.year_from == 1920
    assert p.year_to == date.today().year
    assert (p.rating_min, p.rating_max) == (0.0, 10.0)
    assert p.is_perfect_match is False


def test_from_dict_rejects_non_numeric_year():
    with pytest.raises(PreferenceError):
        SearchPreferences.from_dict({"year_from": "last year"})


@pytest.mark.parametrize("fields, message", [
    ({"content_type": None}, "Content type is required"),
    ({"content_type": "podcast"}, "Unknown content type"),
    ({"genres": [], "moods": []}, "At least one genre or mood is required"),
    ({"year_from": 2010, "year_to": 2000}, "Invalid year range"),
    ({"rating_min": 8, "rating_max": 5}, "Invalid rating range"),
    ({"rating_max": 12}, "Invalid rating range"),
])
def test_validate_messages(fields, message):
    with pytest.raises(PreferenceError, match=message):
        validate(prefs(**fields), is_premium=True)


@pytest.mark.parametrize("fields, message", [
    ({"keywords": ["Heist Planning"]}, "Keywords are a premium feature"),
    ({"specific_year": 1999}, "Specific year selection is a premium feature"),
    ({"is_perfect_match": True}, "Perfect match is a premium feature"),
])
def test_premium_only_fields(fields, message):
    with pytest.raises(PreferenceError, match=message):
        validate(prefs(**fields), is_premium=False)

    validate(prefs(**fields), is_premium=True)


def test_moods_alone_are_enough():
    validate(prefs(genres=[], moods=["Relaxed"]), is_premium=False)


def test_genre_and_mood_names_ignore_case():
    p = prefs(genres=["action", "SCI-FI"], moods=["happy"])

    assert p.genres == ["Action", "Sci-Fi"]
    assert p.moods == ["Happy"]
    validate(p, is_premium=False)


@pytest.mark.parametrize("fields, message", [
    ({"genres": ["Telenovela"]}, "Unknown genre: Telenovela"),
    ({"genres": [], "moods": ["Grumpy"]}, "Unknown mood: Grumpy"),
])
def test_unknown_names_are_rejected(fields, message):
    with pytest.raises(PreferenceError, match=message):
        validate(prefs(**fields), is_premium=True)


@pytest.mark.parametrize("value, expected", [
    ("false", False), ("False", False), ("0", False), (0, False), (None, False),
    ("true", True), (1, True), (True, True),
])
def test_perfect_match_flag_parsing(value, expected):
    assert prefs(is_perfect_match=value).is_perfect_match is expected


def test_string_false_perfect_match_is_fine_for_free_visitors():
    validate(prefs(is_perfect_match="false"), is_premium=False)


@pytest.mark.parametrize("fields", [
    {"year_range": "1990-2000"},
    {"rating_range": [6, 9]},
    {"moods": 5},
    {"genres": {"name": "Action"}},
    {"is_perfect_match": "maybe"},
    {"content_type": ["movie"]},
])
def test_malformed_fields_raise_preference_error(fields):
    with pytest.raises(PreferenceError):
        prefs(**fields)


def test_non_dict_body_raises_preference_error():
    with pytest.raises(PreferenceError):
        SearchPreferences.from_dict(["movie"])


def test_tv_genre_ids():
    assert genre_ids_for(["Action", "Sci-Fi", "Drama"], content_type="tv") == [10759, 10765, 18]
    assert genre_ids_for(["Adventure"], ["Excited"], content_type="tv") == [10759]
    assert genre_ids_for(["Action", "Sci-Fi"]) == [28, 878]


def test_genre_ids_combine_genres_and_moods():
    assert genre_ids_for(["Action", "Superhero"], ["Excited"]) == [28, 12]
    assert genre_ids_for([], ["Nostalgic"]) == []


def test_genre_names_skip_unknown_ids():
    assert genre_names([28, 999999, 10759]) == ["Action"]


def test_mood_keywords():
    assert mood_keywords(["Happy"]) == ["feel-good", "uplifting", "heartwarming"]


def test_form_options_lists_everything():
    options = form_options()

    assert [c["value"] for c in options["content_types"]] == ["movie", "tv"]
    assert len(options["moods"]) == 8
    assert "Heist" in options["keyword_categories"]
    assert options["streaming_services"][0] == "Netflix"


def test_normalize_platform_name():
    assert normalize_platform_name("netflix with ads") == "Netflix"
    assert normalize_platform_name(" Max ") == "HBO Max"
    assert normalize_platform_name("Crunchyroll") is None
    assert normalize_platform_name(None) is None


def test_normalize_platforms_dedupes_in_order():
    assert normalize_platforms(["Hulu", "Netflix Basic", "hulu", "Netflix"]) == ["Hulu", "Netflix"]


def test_extract_platforms_prefers_us():
    providers = {
        "GB": {"flatrate": [{"provider_name": "Disney Plus"}]},
        "US": {
            "buy": [{"provider_name": "Apple TV"}],
            "flatrate": [{"provider_name": "Netflix"}, {"provider_name": "Mubi"}],
        },
    }
    assert extract_platforms(providers) == ["Netflix", "Apple TV+"]


def test_extract_platforms_falls_back_to_gb():
    providers = {"FR": {"flatrate": [{"provider_name": "Netflix"}]},
                 "GB": {"ads": [{"provider_name": "Peacock"}]}}
    assert extract_platforms(providers) == ["Peacock"]
    assert extract_platforms({}) == []
    assert extract_platforms(None) == []
