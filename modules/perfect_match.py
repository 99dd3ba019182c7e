"""
Perfect Match - Claude picks and explains the single best title.
Falls back to the most popular result when Claude is unavailable or
answers with something unusable.
"""

import re
import json
import logging
from typing import List, Dict, Any, Optional

from anthropic import Anthropic

from config import Config
from modules.preferences import SearchPreferences
from modules.prompts import build_perfect_match_prompt, build_explanation_prompt, build_search_prompt

logger = logging.getLogger(__name__)

MAX_SIMILAR = 3


class RecommenderError(Exception):
    """Base exception for recommender errors."""
    pass


class ClaudeAPIError(RecommenderError):
    """Raised when Claude API returns an error."""
    pass


class InvalidResponseError(RecommenderError):
    """Raised when Claude returns an invalid response."""
    pass


def select_from_results(movies: List[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Pick the most popular title as the match and the next three as similar.

    Raises:
        RecommenderError: If there is nothing to pick from
    """
    if not movies:
        raise RecommenderError("No movies available to select Perfect Match.")

    ranked = sorted(movies, key=lambda m: m.get('popularity') or 0, reverse=True)
    return {'main': ranked[0], 'similar': ranked[1:1 + MAX_SIMILAR]}


def fallback_explanation(movie: Dict[str, Any], preferences: SearchPreferences) -> str:
    """Canned explanation built from the overlap between the title and the preferences."""
    genre_match = [g for g in movie.get('genres', []) if g in preferences.genres] or movie.get('genres', [])[:2]
    genres = ' and '.join(genre_match) or 'this kind of'
    mood = ' and '.join(preferences.moods).lower() or 'current'
    year = movie.get('year') or 'its'
    rating = float(movie.get('rating') or 0)

    return (
        f'"{movie.get("title", "This title")}" perfectly matches your interest in {genres} content '
        f'and your {mood} mood. Its {year} release and {rating:.1f} rating align with your '
        f'preferences, making it an ideal choice for your viewing taste.'
    )


def _extract_json(response_text: str) -> Dict[str, Any]:
    """Parse JSON, falling back to the outermost {...} block in the text."""
    try:
        return json.loads(response_text)
    except json.JSONDecodeError as e:
        json_match = re.search(r'\{.*\}', response_text, re.DOTALL)
        if json_match:
            try:
                return json.loads(json_match.group())
            except json.JSONDecodeError:
                pass
        raise InvalidResponseError(f"Failed to parse JSON response: {e}")


def _candidate(candidates: List[Dict[str, Any]], index) -> Optional[Dict[str, Any]]:
    """1-based candidate lookup; None when out of range or not a number."""
    try:
        idx = int(index) - 1
    except (TypeError, ValueError):
        return None
    return candidates[idx] if 0 <= idx < len(candidates) else None


class PerfectMatcher:
    """Chooses and explains a perfect match with Claude."""

    def __init__(self, api_key: Optional[str] = None, client: Optional[Anthropic] = None):
        """
        Initialize the matcher.

        Args:
            api_key: Anthropic API key (if None, uses from Config)
            client: Pre-built Anthropic client (tests)
        """
        self.api_key = api_key or Config.ANTHROPIC_API_KEY

        if client is None and not self.api_key:
            raise RecommenderError(
                "Anthropic API key not found. Please set ANTHROPIC_API_KEY in .env file."
            )

        self.client = client or Anthropic(
            api_key=self.api_key,
            timeout=60.0,
            max_retries=2
        )
        self.model = Config.CLAUDE_MODEL
        self.max_tokens = Config.CLAUDE_MAX_TOKENS
        self.temperature = Config.CLAUDE_TEMPERATURE

    def _ask(self, prompt: str) -> str:
        """
        Send one prompt to Claude and return the text answer.

        Raises:
            ClaudeAPIError: On any API failure
        """
        try:
            response = self.client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
                messages=[
                    {
                        "role": "user",
                        "content": prompt
                    }
                ]
            )
            return response.content[0].text.strip()

        except Exception as e:
            if hasattr(e, 'status_code'):
                if e.status_code == 401:
                    raise ClaudeAPIError("Invalid Anthropic API key. Please check your .env file.")
                elif e.status_code == 429:
                    raise ClaudeAPIError("Rate limit exceeded. Please wait and try again.")
                else:
                    raise ClaudeAPIError(f"Claude API error (HTTP {e.status_code}): {str(e)}")
            else:
                raise ClaudeAPIError(f"Error calling Claude API: {str(e)}")

    def _parse_match(self, response_text: str, candidates: List[Dict[str, Any]]) -> Dict[str, Any]:
        """
        Turn Claude's answer into {movie, insights}.

        Raises:
            InvalidResponseError: If the answer names no valid candidate
        """
        data = _extract_json(response_text)
        if not isinstance(data, dict):
            raise InvalidResponseError("Response must be a JSON object")

        movie = _candidate(candidates, data.get('candidate_index'))
        if movie is None:
            raise InvalidResponseError(f"Invalid candidate_index: {data.get('candidate_index')}")

        similar = []
        for rec in data.get('similar') or []:
            if not isinstance(rec, dict):
                continue
            other = _candidate(candidates, rec.get('candidate_index'))
            if other is None or other is movie or any(s['id'] == other['id'] for s in similar):
                continue
            similar.append({**other, 'recommendation_reason': rec.get('reason', '')})
            if len(similar) == MAX_SIMILAR:
                break

        return {
            'movie': movie,
            'insights': {
                'explanation': (data.get('explanation') or '').strip(),
                'similar': similar,
            },
        }

    def find(self, preferences: SearchPreferences, candidates: List[Dict[str, Any]]) -> Dict[str, Any]:
        """
        Choose one perfect match among candidates.

        Never fails on Claude problems: falls back to the most popular
        candidate and a canned explanation.

        Args:
            preferences: Validated search preferences
            candidates: Enriched candidate movies

        Returns:
            {'movie': ..., 'insights': {'explanation': ..., 'similar': [...]}}

        Raises:
            RecommenderError: If candidates is empty
        """
        if not candidates:
            raise RecommenderError("No movies available to select Perfect Match.")

        try:
            response_text = self._ask(build_perfect_match_prompt(preferences, candidates))
            match = self._parse_match(response_text, candidates)
            if not match['insights']['explanation']:
                match['insights']['explanation'] = fallback_explanation(match['movie'], preferences)
            logger.info("✓ Perfect match: %s", match['movie'].get('title'))
            return match

        except RecommenderError as e:
            logger.warning("⚠️ Claude failed or returned invalid data, fallback insights used: %s", e)
            picked = select_from_results(candidates)
            return {
                'movie': picked['main'],
                'insights': {
                    'explanation': fallback_explanation(picked['main'], preferences),
                    'similar': picked['similar'],
                },
            }

    def explain(self, preferences: SearchPreferences, movie: Dict[str, Any]) -> str:
        """Plain-text explanation for one title, with the canned text as fallback."""
        try:
            text = self._ask(build_explanation_prompt(preferences, movie))
        except ClaudeAPIError as e:
            logger.warning("Explanation fallback for '%s': %s", movie.get('title'), e)
            return fallback_explanation(movie, preferences)

        return text or fallback_explanation(movie, preferences)

    def rank(
        self,
        preferences: SearchPreferences,
        candidates: List[Dict[str, Any]],
        is_premium: bool = True
    ) -> List[Dict[str, Any]]:
        """
        Let Claude reorder candidates (used for premium theme keywords,
        which TMDB discovery cannot filter on).

        Claude's picks come first with a 'recommendation_reason'; the
        remaining candidates follow in their original order.
        """
        if not candidates:
            return []

        try:
            response_text = self._ask(build_search_prompt(preferences, candidates, is_premium))
            data = _extract_json(response_text)
            recs = data.get('recommendations') if isinstance(data, dict) else None
            if not isinstance(recs, list):
                raise InvalidResponseError("Response missing 'recommendations' list")
        except RecommenderError as e:
            logger.warning("Ranking fallback (score order kept): %s", e)
            return candidates

        picked = []
        picked_ids = set()
        for rec in recs:
            if not isinstance(rec, dict):
                continue
            movie = _candidate(candidates, rec.get('candidate_index'))
            if movie is None or movie['id'] in picked_ids:
                continue
            picked_ids.add(movie['id'])
            picked.append({**movie, 'recommendation_reason': rec.get('reason', '')})

        logger.info("✓ Claude ranked %d of %d candidates", len(picked), len(candidates))
        return picked + [m for m in candidates if m['id'] not in picked_ids]
