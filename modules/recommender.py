"""
Recommendation pipeline.
Ties the search-credit ledger, TMDB discovery, scoring, enrichment,
Perfect Match and the result cache together for one search.
"""

import logging
from dataclasses import dataclass
from typing import List, Dict, Any, Optional

from config import Config
from modules.cache import RecommendationCache
from modules.perfect_match import PerfectMatcher, fallback_explanation, select_from_results
from modules.preferences import SearchPreferences, validate
from modules.premium import PremiumRequiredError
from modules.scoring import filter_candidates, rank_candidates
from modules.search_limits import QuotaStatus, SearchLimiter
from modules.sharing import share_links
from modules.tmdb_client import TMDBClient, MovieNotFoundError
from modules.visitor import Visitor

logger = logging.getLogger(__name__)

NO_RESULTS_MESSAGE = 'No movies found matching your criteria. Try adjusting your filters.'


@dataclass
class SearchContext:
    """State carried between pipeline steps for one search."""
    preferences: SearchPreferences
    visitor: Visitor
    is_premium: bool
    quota: QuotaStatus
    preferences_hash: str
    cached: Optional[Dict[str, Any]] = None

    @property
    def result_limit(self) -> int:
        return Config.PREMIUM_RESULTS_PER_SEARCH if self.is_premium else Config.BASIC_RESULTS_PER_SEARCH

    @property
    def wants_perfect_match(self) -> bool:
        return self.is_premium and self.preferences.is_perfect_match


class RecommendationService:
    """Runs the search pipeline for one visitor."""

    def __init__(
        self,
        tmdb_client: TMDBClient,
        limiter: SearchLimiter,
        cache: Optional[RecommendationCache] = None,
        matcher: Optional[PerfectMatcher] = None,
        site_url: Optional[str] = None
    ):
        """
        Args:
            tmdb_client: TMDB client for discovery and enrichment
            limiter: Search-credit ledger
            cache: Result cache (None disables caching)
            matcher: Claude matcher (None means Perfect Match uses fallback picks)
            site_url: Origin used in share links
        """
        self.tmdb = tmdb_client
        self.limiter = limiter
        self.cache = cache
        self.matcher = matcher
        self.site_url = site_url or Config.SITE_URL

    # ------------------------------------------------------------------
    # Pipeline steps
    # ------------------------------------------------------------------

    def start(self, preferences: SearchPreferences, visitor: Visitor) -> SearchContext:
        """
        Tier check, validation, credit and cache lookup.

        Raises:
            PreferenceError: If preferences are invalid for the visitor's tier
            SearchLimitExceeded: If a free visitor has no credits left
        """
        is_premium = self.limiter.is_premium(visitor)
        validate(preferences, is_premium)

        # A cache hit still costs a credit
        quota = self.limiter.require_credit(visitor)

        preferences_hash = RecommendationCache.preferences_hash(preferences, is_premium)
        cached = self.cache.get(preferences_hash) if self.cache else None

        return SearchContext(
            preferences=preferences,
            visitor=visitor,
            is_premium=is_premium,
            quota=quota,
            preferences_hash=preferences_hash,
            cached=cached
        )

    def find_candidates(self, context: SearchContext) -> List[Dict[str, Any]]:
        """
        Discover, filter and score; returns the top N for the visitor's tier.

        Raises:
            MovieNotFoundError: If nothing survives the filters
            TMDBError: If TMDB fails
        """
        preferences = context.preferences
        discovered = self.tmdb.discover(preferences)

        candidates = filter_candidates(discovered, preferences)
        if not candidates:
            raise MovieNotFoundError(NO_RESULTS_MESSAGE)

        ranked = rank_candidates(candidates, preferences)

        # Theme keywords are not a discovery filter; let Claude weigh them
        if context.is_premium and preferences.keywords and self.matcher:
            ranked = self.matcher.rank(preferences, ranked[:context.result_limit * 3])

        logger.info("✓ %d candidates after filtering, keeping %d", len(ranked), context.result_limit)
        return ranked[:context.result_limit]

    def enrich(self, context: SearchContext, movies: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Trailer, platforms and share links; re-ranked now that platforms are known."""
        enriched = self.tmdb.enrich_movies(movies)

        for movie in enriched:
            movie['share_links'] = share_links(movie, self.site_url)

        if context.preferences.services and not any('recommendation_reason' in m for m in enriched):
            enriched = rank_candidates(enriched, context.preferences)

        return enriched

    def perfect_match(self, context: SearchContext, movies: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        """Perfect Match for premium visitors who asked for it, else None."""
        if not context.wants_perfect_match or not movies:
            return None

        if self.matcher is not None:
            return self.matcher.find(context.preferences, movies)

        picked = select_from_results(movies)
        return {
            'movie': picked['main'],
            'insights': {
                'explanation': fallback_explanation(picked['main'], context.preferences),
                'similar': picked['similar'],
            },
        }

    def finish(
        self,
        context: SearchContext,
        results: List[Dict[str, Any]],
        perfect_match: Optional[Dict[str, Any]]
    ) -> Dict[str, Any]:
        """Store in the cache and build the response payload."""
        if self.cache:
            self.cache.set(context.preferences_hash, results, perfect_match)
        return self._payload(context, results, perfect_match, cached=False)

    def _payload(self, context: SearchContext, results, perfect_match, cached: bool) -> Dict[str, Any]:
        return {
            'results': results,
            'perfect_match': perfect_match,
            'quota': context.quota.to_dict(),
            'is_premium': context.is_premium,
            'cached': cached,
        }

    def from_cache(self, context: SearchContext) -> Dict[str, Any]:
        return self._payload(context, context.cached['results'], context.cached.get('perfect_match'), cached=True)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def recommend(self, preferences: SearchPreferences, visitor: Visitor) -> Dict[str, Any]:
        """
        Run the whole search.

        Args:
            preferences: Parsed search preferences
            visitor: Resolved visitor

        Returns:
            {'results', 'perfect_match', 'quota', 'is_premium', 'cached'}

        Raises:
            PreferenceError, SearchLimitExceeded, TMDBError, RecommenderError
        """
        context = self.start(preferences, visitor)
        if context.cached is not None:
            return self.from_cache(context)

        candidates = self.find_candidates(context)
        results = self.enrich(context, candidates)
        perfect_match = self.perfect_match(context, results)

        logger.info("✓ Search for %s returned %d results%s", visitor.ip, len(results),
                    " + perfect match" if perfect_match else "")
        return self.finish(context, results, perfect_match)

    def explain(self, preferences: SearchPreferences, movie: Dict[str, Any], visitor: Visitor) -> str:
        """
        Perfect Match explanation for a title the visitor picked.

        Raises:
            PremiumRequiredError: If the visitor is not a supporter
        """
        if not self.limiter.is_premium(visitor):
            raise PremiumRequiredError('Perfect match is a premium feature')

        if self.matcher is None:
            return fallback_explanation(movie, preferences)
        return self.matcher.explain(preferences, movie)
