"""
TMDB API Client
Discovers movies and TV series from The Movie Database (TMDB) and enriches
them with posters, trailers and streaming availability.
"""

import re
import time
import logging
import threading
from collections import deque
from typing import Dict, List, Optional, Any, Tuple
from urllib.parse import quote_plus
from concurrent.futures import ThreadPoolExecutor

import requests
from rapidfuzz import fuzz
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from config import Config
from modules.catalog import genre_ids_for, genre_names
from modules.platforms import extract_platforms
from modules.preferences import SearchPreferences

logger = logging.getLogger(__name__)

YEAR_PADDING = 2
RATING_PADDING = 0.5


class TMDBError(Exception):
    """Base exception for TMDB client errors."""
    pass


class MovieNotFoundError(TMDBError):
    """Raised when nothing in TMDB matches."""
    pass


class TMDBAPIError(TMDBError):
    """Raised when TMDB API returns an error."""
    pass


class TMDBRateLimitError(TMDBAPIError):
    """Raised on HTTP 429; retried with backoff."""
    pass


def trailer_search_url(title: str, year: Optional[int] = None) -> str:
    """YouTube search link used when TMDB has no trailer."""
    query = f"{title} {year} trailer" if year else f"{title} trailer"
    return f"https://www.youtube.com/results?search_query={quote_plus(query)}"


class TMDBClient:
    """Client for interacting with the TMDB API."""

    def __init__(self, api_key: Optional[str] = None, session: Optional[requests.Session] = None):
        """
        Initialize the TMDB client.

        Args:
            api_key: TMDB API key (if None, uses from Config)
            session: Optional requests session (for connection pooling / tests)
        """
        self.api_key = api_key or Config.TMDB_API_KEY
        self.base_url = Config.TMDB_BASE_URL
        self.image_base_url = Config.TMDB_IMAGE_BASE_URL
        self.backdrop_base_url = Config.TMDB_BACKDROP_BASE_URL

        if not self.api_key:
            raise TMDBError("TMDB API key not found. Please set TMDB_API_KEY in .env file.")

        # In-memory cache: key -> (stored_at, value)
        self.cache: Optional[Dict[str, Tuple[float, Any]]] = {} if Config.ENABLE_CACHE else None
        self.cache_ttl = Config.TMDB_CACHE_TTL
        self._cache_lock = threading.Lock()

        # Sliding-window rate limiting (TMDB allows ~40 requests per 10 seconds)
        self.rate_limit = Config.TMDB_RATE_LIMIT
        self.rate_window = Config.TMDB_RATE_WINDOW
        self._request_times = deque()
        self._rate_lock = threading.Lock()

        # Thread pool for parallel enrichment
        self.executor = ThreadPoolExecutor(max_workers=5)

        # Session for connection pooling
        self.session = session or requests.Session()
        self.session.params = {'api_key': self.api_key}

    def _wait_for_rate_limit(self):
        """Block until another request fits in the rate window."""
        while True:
            with self._rate_lock:
                now = time.monotonic()
                while self._request_times and now - self._request_times[0] > self.rate_window:
                    self._request_times.popleft()

                if len(self._request_times) < self.rate_limit:
                    self._request_times.append(now)
                    return

                wait = self.rate_window - (now - self._request_times[0])

            time.sleep(max(wait, 0.01))

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        retry=retry_if_exception_type((
            requests.exceptions.ConnectionError,
            requests.exceptions.Timeout,
            TMDBRateLimitError,
        )),
        reraise=True
    )
    def _send(self, url: str, params: Optional[Dict]) -> Dict:
        self._wait_for_rate_limit()

        response = self.session.get(
            url,
            params=params,
            headers={'Accept': 'application/json'},
            timeout=Config.REQUEST_TIMEOUT
        )

        if response.status_code == 401:
            raise TMDBAPIError("Invalid TMDB API key. Please check your .env file.")
        elif response.status_code == 404:
            raise MovieNotFoundError(f"Resource not found: {url.replace(self.base_url, '')}")
        elif response.status_code == 429:
            raise TMDBRateLimitError("TMDB API rate limit exceeded. Please wait and try again.")
        elif response.status_code != 200:
            raise TMDBAPIError(f"TMDB API error (HTTP {response.status_code}): {response.text[:200]}")

        return response.json()

    def _make_request(self, endpoint: str, params: Optional[Dict] = None) -> Dict:
        """
        Make a request to the TMDB API with retry logic.

        Args:
            endpoint: API endpoint (e.g., '/discover/movie')
            params: Query parameters

        Returns:
            JSON response as dictionary

        Raises:
            TMDBAPIError: If the API returns an error
            MovieNotFoundError: On HTTP 404
        """
        url = f"{self.base_url}{endpoint}"

        try:
            return self._send(url, params)
        except requests.exceptions.Timeout:
            raise TMDBAPIError("TMDB API request timed out.")
        except requests.exceptions.RequestException as e:
            raise TMDBAPIError(f"Network error while accessing TMDB API: {str(e)}")
        except ValueError as e:
            raise TMDBAPIError(f"Invalid JSON from TMDB API: {str(e)}")

    def _get_cache_key(self, prefix: str, *args) -> str:
        """Generate a cache key from prefix and arguments."""
        return f"{prefix}:{'_'.join(str(arg) for arg in args)}"

    def _get_from_cache(self, key: str) -> Optional[Any]:
        """Get value from cache if enabled, available and not expired."""
        if self.cache is None:
            return None
        with self._cache_lock:
            entry = self.cache.get(key)
            if entry is None:
                return None
            stored_at, value = entry
            if time.time() - stored_at > self.cache_ttl:
                del self.cache[key]
                return None
            return value

    def _set_in_cache(self, key: str, value: Any):
        """Set value in cache if enabled."""
        if self.cache is not None:
            with self._cache_lock:
                self.cache[key] = (time.time(), value)

    def _image_url(self, path: Optional[str]) -> str:
        return f"{self.image_base_url}{path}" if path else Config.FALLBACK_IMAGE

    def _backdrop_url(self, path: Optional[str]) -> Optional[str]:
        return f"{self.backdrop_base_url}{path}" if path else None

    def _to_movie(self, result: Dict[str, Any], media_type: str) -> Dict[str, Any]:
        """
        Convert a TMDB list result into the app's movie dictionary.

        Args:
            result: One entry of a TMDB 'results' array
            media_type: 'movie' or 'tv'

        Returns:
            Movie dictionary (not yet enriched with trailer or platforms)
        """
        release_date = result.get('release_date') or result.get('first_air_date') or ''
        year = None
        if len(release_date) >= 4 and release_date[:4].isdigit():
            year = int(release_date[:4])

        genre_ids = result.get('genre_ids') or [g['id'] for g in result.get('genres', [])]

        return {
            'id': str(result['id']),
            'tmdb_id': result['id'],
            'media_type': media_type,
            'title': result.get('title') or result.get('name') or 'Unknown',
            'year': year,
            'rating': result.get('vote_average') or 0,
            'vote_count': result.get('vote_count') or 0,
            'popularity': result.get('popularity') or 0,
            'duration': 'Movie' if media_type == 'movie' else 'TV Series',
            'language': (result.get('original_language') or 'en').upper(),
            'genres': genre_names(genre_ids),
            'genre_ids': list(genre_ids),
            'description': result.get('overview') or '',
            'image_url': self._image_url(result.get('poster_path')),
            'backdrop_url': self._backdrop_url(result.get('backdrop_path')),
            'youtube_url': None,
            'streaming_platforms': [],
        }

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    def _discover_params(self, preferences: SearchPreferences) -> Dict[str, Any]:
        """Build /discover query parameters (ranges slightly widened for recall)."""
        date_field = 'primary_release_date' if preferences.content_type == 'movie' else 'first_air_date'

        params = {
            'include_adult': 'false',
            'language': 'en-US',
            'sort_by': 'popularity.desc',
            'vote_count.gte': 50,
            'vote_average.gte': max(0.0, preferences.rating_min - RATING_PADDING),
            'vote_average.lte': min(10.0, preferences.rating_max + RATING_PADDING),
        }

        if preferences.specific_year:
            params[f'{date_field}.gte'] = f'{preferences.specific_year}-01-01'
            params[f'{date_field}.lte'] = f'{preferences.specific_year}-12-31'
        else:
            params[f'{date_field}.gte'] = f'{preferences.year_from - YEAR_PADDING}-01-01'
            params[f'{date_field}.lte'] = f'{preferences.year_to + YEAR_PADDING}-12-31'

        # Two genres at most; TMDB ANDs them and more rarely matches anything
        genre_ids = genre_ids_for(preferences.genres, preferences.moods, preferences.content_type)[:2]
        if genre_ids:
            params['with_genres'] = ','.join(map(str, genre_ids))

        return params

    def discover(self, preferences: SearchPreferences, pages: int = 2) -> List[Dict[str, Any]]:
        """
        Discover titles matching the visitor's preferences.

        Falls back to a relaxed query (no genre filter, lower vote count)
        when the strict one returns nothing.

        Args:
            preferences: Validated search preferences
            pages: Number of result pages to fetch

        Returns:
            List of movie dictionaries

        Raises:
            MovieNotFoundError: If even the relaxed query finds nothing
            TMDBAPIError: If TMDB fails
        """
        media_type = preferences.content_type
        endpoint = f'/discover/{media_type}'
        params = self._discover_params(preferences)

        logger.info("TMDB discover %s: genres=%s years=%s-%s rating=%s-%s",
                    media_type, params.get('with_genres'),
                    params.get('primary_release_date.gte', params.get('first_air_date.gte')),
                    params.get('primary_release_date.lte', params.get('first_air_date.lte')),
                    params['vote_average.gte'], params['vote_average.lte'])

        results = self._fetch_pages(endpoint, params, pages)

        if not results:
            logger.info("No results, trying a relaxed search...")
            params.pop('with_genres', None)
            params['vote_count.gte'] = 20
            results = self._fetch_pages(endpoint, params, pages)

        if not results:
            raise MovieNotFoundError('No movies found matching your criteria. Try adjusting your filters.')

        movies = [self._to_movie(r, media_type) for r in results if r.get('id')]
        logger.info("✓ Discovered %d %s titles", len(movies), media_type)
        return movies

    def _fetch_pages(self, endpoint: str, params: Dict[str, Any], pages: int) -> List[Dict[str, Any]]:
        results = []
        for page in range(1, pages + 1):
            cache_key = self._get_cache_key('discover', endpoint, page, sorted(params.items()))
            data = self._get_from_cache(cache_key)
            if data is None:
                data = self._make_request(endpoint, {**params, 'page': page})
                self._set_in_cache(cache_key, data)

            results.extend(data.get('results', []))

            if page >= (data.get('total_pages') or 1):
                break
        return results

    # ------------------------------------------------------------------
    # Title search
    # ------------------------------------------------------------------

    def _normalize_title(self, title: str) -> str:
        """
        Normalize a movie title for better matching.
        Removes articles, special characters, and converts to lowercase.
        """
        normalized = title.lower()
        normalized = re.sub(r'^(the|a|an|le|la|les|un|une|der|die|das|el|los|las)\s+', '', normalized)
        normalized = re.sub(r'[^a-z0-9\s]', '', normalized)
        return ' '.join(normalized.split())

    def _result_year(self, result: Dict[str, Any]) -> Optional[int]:
        date = result.get('release_date') or result.get('first_air_date') or ''
        return int(date[:4]) if len(date) >= 4 and date[:4].isdigit() else None

    def search_title(
        self,
        title: str,
        year: Optional[int] = None,
        media_type: Optional[str] = None,
        threshold: int = 80
    ) -> Optional[Dict[str, Any]]:
        """
        Find the best TMDB match for a title.

        Args:
            title: Movie or series title
            year: Release year (optional, boosts matching results)
            media_type: Restrict to 'movie' or 'tv'
            threshold: Minimum fuzzy similarity (0-100)

        Returns:
            The matching TMDB result (with 'media_type'), or None
        """
        cache_key = self._get_cache_key('search', title.lower(), year or 'no_year', media_type or 'any')
        cached = self._get_from_cache(cache_key)
        if cached is not None:
            return cached or None

        params = {'query': title, 'include_adult': 'false', 'language': 'en-US'}
        data = self._make_request('/search/multi', params)

        candidates = [
            r for r in data.get('results', [])[:10]
            if r.get('media_type') in ('movie', 'tv')
            and (media_type is None or r.get('media_type') == media_type)
        ]

        normalized_search = self._normalize_title(title)
        best_match = None
        best_score = 0

        for result in candidates:
            result_title = result.get('title') or result.get('name') or ''
            score = fuzz.ratio(normalized_search, self._normalize_title(result_title))

            # Bonus points for year match
            if year and self._result_year(result) == year:
                score += 15

            if score > best_score and score >= threshold:
                best_score = score
                best_match = result

        self._set_in_cache(cache_key, best_match or {})

        if best_match is None:
            logger.debug("No match found for '%s'", title)
        return best_match

    # ------------------------------------------------------------------
    # Enrichment
    # ------------------------------------------------------------------

    def get_details(self, media_type: str, tmdb_id: int) -> Dict[str, Any]:
        """
        Get details, videos and watch providers in ONE request.

        Args:
            media_type: 'movie' or 'tv'
            tmdb_id: TMDB id

        Returns:
            Raw TMDB details payload
        """
        cache_key = self._get_cache_key('details', media_type, tmdb_id)
        cached = self._get_from_cache(cache_key)
        if cached is not None:
            return cached

        details = self._make_request(
            f'/{media_type}/{tmdb_id}',
            {'append_to_response': 'videos,watch/providers', 'language': 'en-US'}
        )
        self._set_in_cache(cache_key, details)
        return details

    def get_watch_providers(self, media_type: str, tmdb_id: int) -> List[str]:
        """Approved streaming platforms for a title (US, falling back to GB)."""
        try:
            data = self._make_request(f'/{media_type}/{tmdb_id}/watch/providers')
        except TMDBError as e:
            logger.warning("Failed to fetch watch providers for %s: %s", tmdb_id, e)
            return []
        return extract_platforms(data.get('results'))

    def _find_trailer(self, details: Dict[str, Any]) -> Optional[str]:
        for video in (details.get('videos') or {}).get('results', []):
            if video.get('site') == 'YouTube' and video.get('type') in ('Trailer', 'Teaser') and video.get('key'):
                return f"https://www.youtube.com/watch?v={video['key']}"
        return None

    def _duration(self, details: Dict[str, Any], media_type: str) -> str:
        if media_type == 'tv':
            seasons = details.get('number_of_seasons')
            return f"{seasons} season{'s' if seasons != 1 else ''}" if seasons else 'TV Series'
        runtime = details.get('runtime')
        return f"{runtime} min" if runtime else 'Movie'

    def enrich_movie(self, movie: Dict[str, Any]) -> Dict[str, Any]:
        """
        Add poster, trailer, runtime and streaming platforms to a movie.

        Movies without a TMDB id are looked up by title first. Never raises:
        on failure the movie gets the fallback image and a trailer search link.

        Args:
            movie: Movie dictionary with at least 'title'

        Returns:
            Enriched copy of the movie
        """
        enriched = dict(movie)
        title = movie.get('title') or ''
        year = movie.get('year')

        try:
            tmdb_id = movie.get('tmdb_id')
            media_type = movie.get('media_type') or 'movie'

            if not tmdb_id:
                match = self.search_title(title, year, movie.get('media_type'))
                if not match:
                    raise MovieNotFoundError(f"No TMDB match for '{title}'")
                tmdb_id = match['id']
                media_type = match['media_type']
                enriched.update({k: v for k, v in self._to_movie(match, media_type).items()
                                 if not enriched.get(k)})
                enriched['tmdb_id'] = tmdb_id
                enriched['media_type'] = media_type

            details = self.get_details(media_type, tmdb_id)

            if details.get('poster_path'):
                enriched['image_url'] = self._image_url(details['poster_path'])
            elif not enriched.get('image_url'):
                enriched['image_url'] = Config.FALLBACK_IMAGE
            if details.get('backdrop_path'):
                enriched['backdrop_url'] = self._backdrop_url(details['backdrop_path'])

            enriched['duration'] = self._duration(details, media_type)
            if details.get('genres') and not enriched.get('genres'):
                enriched['genres'] = [g['name'] for g in details['genres']]

            enriched['youtube_url'] = self._find_trailer(details) or trailer_search_url(title, year)

            providers = extract_platforms((details.get('watch/providers') or {}).get('results'))
            platforms = list(enriched.get('streaming_platforms') or [])
            enriched['streaming_platforms'] = platforms + [p for p in providers if p not in platforms]

        except TMDBError as e:
            logger.warning("Error enriching '%s': %s", title, e)
            if not enriched.get('image_url'):
                enriched['image_url'] = Config.FALLBACK_IMAGE
            enriched['youtube_url'] = enriched.get('youtube_url') or trailer_search_url(title, year)
            enriched.setdefault('streaming_platforms', [])

        return enriched

    def enrich_movies(self, movies: List[Dict[str, Any]], parallel: bool = True) -> List[Dict[str, Any]]:
        """
        Enrich multiple movies, in parallel by default. Order is preserved.

        Args:
            movies: Movie dictionaries
            parallel: Whether to use the thread pool

        Returns:
            Enriched movies
        """
        if parallel and len(movies) > 1:
            enriched = list(self.executor.map(self.enrich_movie, movies))
        else:
            enriched = [self.enrich_movie(m) for m in movies]

        logger.info(
            "✓ Enriched %d titles (%d with trailers, %d with platforms)",
            len(enriched),
            sum(1 for m in enriched if m.get('youtube_url') and 'watch?v=' in m['youtube_url']),
            sum(1 for m in enriched if m.get('streaming_platforms')),
        )
        return enriched

    def clear_cache(self):
        """Clear the in-memory cache."""
        if self.cache is not None:
            with self._cache_lock:
                self.cache.clear()
            logger.info("Cache cleared")

    def get_cache_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        if self.cache is not None:
            return {
                'size': len(self.cache),
                'enabled': True
            }
        return {'size': 0, 'enabled': False}
