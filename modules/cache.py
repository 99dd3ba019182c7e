"""
Recommendation cache.
Identical searches within CACHE_TTL reuse the stored results instead of
hitting TMDB and Claude again.
"""

import json
import hashlib
import logging
from datetime import timedelta
from typing import Dict, Any, Optional, List

from sqlalchemy.exc import SQLAlchemyError

from config import Config
from modules.preferences import SearchPreferences
from modules.storage import CachedRecommendation, Database, StorageError, as_utc, utcnow

logger = logging.getLogger(__name__)


class RecommendationCache:
    """Database-backed cache keyed by a hash of the search preferences."""

    def __init__(self, db: Database, ttl: Optional[int] = None, enabled: Optional[bool] = None):
        self.db = db
        self.ttl = Config.CACHE_TTL if ttl is None else ttl
        self.enabled = Config.ENABLE_CACHE if enabled is None else enabled

    @staticmethod
    def preferences_hash(preferences: SearchPreferences, is_premium: bool) -> str:
        """
        SHA-256 of the canonical preferences.

        List order does not matter. Premium-only fields are blanked for free
        visitors so they share entries with equivalent premium-free searches.
        """
        canonical = {
            'content_type': preferences.content_type,
            'moods': sorted(preferences.moods),
            'genres': sorted(preferences.genres),
            'keywords': sorted(preferences.keywords) if is_premium else [],
            'year_from': preferences.year_from,
            'year_to': preferences.year_to,
            'specific_year': preferences.specific_year if is_premium else None,
            'rating_min': preferences.rating_min,
            'rating_max': preferences.rating_max,
            'services': sorted(preferences.services),
            'is_perfect_match': preferences.is_perfect_match if is_premium else False,
            'is_premium': is_premium,
        }
        encoded = json.dumps(canonical, sort_keys=True, separators=(',', ':'))
        return hashlib.sha256(encoded.encode('utf-8')).hexdigest()

    def get(self, preferences_hash: str) -> Optional[Dict[str, Any]]:
        """Cached {'results', 'perfect_match'} if present and fresh, else None."""
        if not self.enabled:
            return None

        try:
            with self.db.session_scope() as session:
                entry = session.get(CachedRecommendation, preferences_hash)
                if entry is None:
                    return None

                age = utcnow() - as_utc(entry.created_at)
                if age > timedelta(seconds=self.ttl):
                    return None

                logger.info("✓ Cache hit %s", preferences_hash[:12])
                return {'results': entry.results, 'perfect_match': entry.perfect_match}

        except (StorageError, SQLAlchemyError) as e:
            logger.warning("Cache read failed: %s", e)
            return None

    def set(self, preferences_hash: str, results: List[Dict[str, Any]],
            perfect_match: Optional[Dict[str, Any]] = None) -> bool:
        """Store (or replace) an entry. Returns False if it could not be written."""
        if not self.enabled:
            return False

        try:
            with self.db.session_scope() as session:
                session.merge(CachedRecommendation(
                    preferences_hash=preferences_hash,
                    results=results,
                    perfect_match=perfect_match,
                    created_at=utcnow()
                ))
            return True

        except (StorageError, SQLAlchemyError) as e:
            logger.warning("Cache write failed: %s", e)
            return False
