"""
Tests for the recommendation cache and share links.
"""

from datetime import timedelta
from unittest.mock import patch
from urllib.parse import parse_qs, urlparse

from modules.cache import RecommendationCache
from modules.preferences import SearchPreferences
from modules.sharing import SITE_SHARE_MESSAGES, random_share_message, share_links, share_message
from modules.storage import CachedRecommendation, StorageError, utcnow


def test_hash_ignores_list_order():
    a = SearchPreferences(content_type='movie', genres=['Action', 'Drama'], moods=['Happy', 'Excited'])
    b = SearchPreferences(content_type='movie', genres=['Drama', 'Action'], moods=['Excited', 'Happy'])

    assert RecommendationCache.preferences_hash(a, False) == RecommendationCache.preferences_hash(b, False)
    assert len(RecommendationCache.preferences_hash(a, False)) == 64


def test_hash_blanks_premium_fields_for_free_tier():
    plain = SearchPreferences(content_type='movie', genres=['Action'])
    with_keywords = SearchPreferences(content_type='movie', genres=['Action'], keywords=['Robbery'])

    assert (RecommendationCache.preferences_hash(plain, False)
            == RecommendationCache.preferences_hash(with_keywords, False))
    assert (RecommendationCache.preferences_hash(plain, True)
            != RecommendationCache.preferences_hash(with_keywords, True))


def test_hash_separates_tiers():
    p = SearchPreferences(content_type='movie', genres=['Action'])
    assert RecommendationCache.preferences_hash(p, False) != RecommendationCache.preferences_hash(p, True)


def test_set_then_get(db, movies):
    cache = RecommendationCache(db, ttl=300)

    assert cache.get('abc') is None
    assert cache.set('abc', movies[:2], {'movie': movies[0]}) is True

    entry = cache.get('abc')
    assert [m['title'] for m in entry['results']] == ['Mad Max: Fury Road', 'John Wick']
    assert entry['perfect_match']['movie']['title'] == 'Mad Max: Fury Road'


def test_set_overwrites(db, movies):
    cache = RecommendationCache(db, ttl=300)
    cache.set('abc', movies[:1])
    cache.set('abc', movies[1:2])

    assert cache.get('abc')['results'][0]['title'] == 'John Wick'


def test_expired_entries_are_ignored(db, movies):
    cache = RecommendationCache(db, ttl=300)
    cache.set('abc', movies[:1])

    with db.session_scope() as session:
        session.get(CachedRecommendation, 'abc').created_at = utcnow() - timedelta(minutes=6)

    assert cache.get('abc') is None


def test_disabled_cache(db, movies):
    cache = RecommendationCache(db, enabled=False)
    assert cache.set('abc', movies) is False
    assert cache.get('abc') is None


def test_storage_errors_are_swallowed(db, movies):
    cache = RecommendationCache(db)

    with patch.object(db, 'session_scope', side_effect=StorageError('down')):
        assert cache.get('abc') is None
        assert cache.set('abc', movies) is False


def test_share_message(movies):
    assert share_message(movies[0]) == (
        '🎬 Found "Mad Max: Fury Road" on EzStreamTo! Check where to watch it! 🍿\n\nhttps://ezstreamto.com'
    )


def test_share_links(movies):
    links = share_links(movies[0], 'https://example.test')

    assert set(links) == {'facebook', 'twitter', 'whatsapp'}

    twitter = parse_qs(urlparse(links['twitter']).query)
    assert twitter['url'] == ['https://example.test']
    assert 'Mad Max: Fury Road' in twitter['text'][0]

    whatsapp = parse_qs(urlparse(links['whatsapp']).query)
    assert whatsapp['text'][0].endswith('https://example.test')

    assert links['facebook'].startswith('https://www.facebook.com/sharer/sharer.php?')


def test_random_share_message():
    assert random_share_message() in SITE_SHARE_MESSAGES
