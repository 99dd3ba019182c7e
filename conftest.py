"""
Shared pytest fixtures: in-memory database, visitors and sample titles.
"""

from unittest.mock import MagicMock

import pytest

from config import Config
from modules.storage import Database
from modules.visitor import Visitor


@pytest.fixture
def db():
    database = Database("sqlite://")
    database.create_tables()
    return database


@pytest.fixture
def visitor():
    return Visitor(uuid="0b3f1c9e-5d2a-4e7b-9f1a-2c3d4e5f6a7b", ip="203.0.113.7")


@pytest.fixture
def other_visitor():
    return Visitor(uuid="9a8b7c6d-5e4f-4a3b-8c2d-1e0f9a8b7c6d", ip="198.51.100.23")


@pytest.fixture(autouse=True)
def quiet_config(monkeypatch):
    """Deterministic settings regardless of the developer's .env."""
    monkeypatch.setattr(Config, "FREE_SEARCH_LIMIT", 5)
    monkeypatch.setattr(Config, "QUOTA_RESET_POLICY", "lifetime")
    monkeypatch.setattr(Config, "QUOTA_FAIL_OPEN", True)
    monkeypatch.setattr(Config, "MIN_SUPPORT_AMOUNT", 5.0)
    monkeypatch.setattr(Config, "ENABLE_CACHE", True)
    monkeypatch.setattr(Config, "SITE_URL", "https://ezstreamto.com")
    monkeypatch.setattr(Config, "BMC_WEBHOOK_SECRET", "whsec_test")


def make_movie(tmdb_id, title, year=2015, rating=7.5, popularity=100.0, genre_ids=(28,), vote_count=500):
    """A discovered title as TMDBClient._to_movie builds it."""
    return {
        'id': str(tmdb_id),
        'tmdb_id': tmdb_id,
        'media_type': 'movie',
        'title': title,
        'year': year,
        'rating': rating,
        'vote_count': vote_count,
        'popularity': popularity,
        'duration': 'Movie',
        'language': 'EN',
        'genres': ['Action'],
        'genre_ids': list(genre_ids),
        'description': f'{title} plot.',
        'image_url': f'https://image.tmdb.org/t/p/w500/{tmdb_id}.jpg',
        'backdrop_url': None,
        'youtube_url': None,
        'streaming_platforms': [],
    }


@pytest.fixture
def movies():
    return [
        make_movie(1, "Mad Max: Fury Road", 2015, 7.6, 350.0, (28, 12)),
        make_movie(2, "John Wick", 2014, 7.4, 420.0, (28, 53)),
        make_movie(3, "Edge of Tomorrow", 2014, 7.6, 80.0, (28, 878)),
        make_movie(4, "Dredd", 2012, 6.9, 40.0, (28, 878)),
        make_movie(5, "The Raid", 2011, 7.6, 35.0, (28, 80)),
        make_movie(6, "Upgrade", 2018, 7.2, 25.0, (28, 878)),
    ]


def claude_response(text):
    """Fake anthropic messages.create() return value."""
    block = MagicMock()
    block.text = text
    response = MagicMock()
    response.content = [block]
    return response


def fake_enrich(movies):
    """Stand-in for TMDBClient.enrich_movies: odd ids stream on Netflix."""
    return [{**m, 'youtube_url': f"https://www.youtube.com/watch?v={m['tmdb_id']}",
             'streaming_platforms': ['Netflix'] if m['tmdb_id'] % 2 else []} for m in movies]
