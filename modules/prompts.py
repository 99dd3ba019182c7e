"""
Prompt builders for Claude.
"""

from typing import List, Dict, Any, Optional

from modules.catalog import CONTENT_TYPES
from modules.preferences import SearchPreferences

SEPARATOR = "━" * 60


def _type_label(preferences: SearchPreferences) -> str:
    return CONTENT_TYPES.get(preferences.content_type, 'Movies')


def _requirements(preferences: SearchPreferences, is_premium: bool = True) -> List[str]:
    """Visitor requirements as prompt lines."""
    lines = []

    if preferences.genres:
        lines.append("Genres: " + ", ".join(preferences.genres))

    if preferences.moods:
        lines.append("Moods: " + ", ".join(preferences.moods))

    if preferences.specific_year and is_premium:
        lines.append(f"Released in exactly: {preferences.specific_year}")
    else:
        lines.append(f"Released between {preferences.year_from} and {preferences.year_to}")

    lines.append(f"Rating between {preferences.rating_min:g} and {preferences.rating_max:g}")

    if preferences.keywords and is_premium:
        lines.append("Themes or elements: " + ", ".join(preferences.keywords))

    if preferences.services:
        lines.append("Available on: " + ", ".join(preferences.services))

    return lines


def format_movie_compact(movie: Dict[str, Any], index: Optional[int] = None) -> str:
    """
    Format a movie compactly for the prompt.

    Args:
        movie: Movie dictionary
        index: Optional 1-based index number

    Returns:
        Compact formatted string
    """
    title = movie.get('title', 'Unknown')
    year = movie.get('year') or '?'
    genres = ', '.join(movie.get('genres', [])[:3])
    rating = movie.get('rating', 'N/A')
    overview = (movie.get('description') or '')[:150]

    prefix = f"[{index}] " if index is not None else ""

    return f"""{prefix}{title} ({year})
  Genres: {genres} | Rating: {rating}/10
  Plot: {overview}""".strip()


def build_search_prompt(
    preferences: SearchPreferences,
    candidates: List[Dict[str, Any]],
    is_premium: bool = False
) -> str:
    """
    Build the prompt that ranks candidates against the visitor's requirements.

    Args:
        preferences: Validated search preferences
        candidates: Candidate pool (referenced by 1-based index)
        is_premium: Whether premium-only requirements are honored

    Returns:
        Complete prompt string
    """
    requirements = "\n".join(f"- {line}" for line in _requirements(preferences, is_premium))
    candidates_formatted = "\n\n".join(
        format_movie_compact(movie, i) for i, movie in enumerate(candidates, 1)
    )

    return f"""You are an expert film curator. Find {_type_label(preferences)} that EXACTLY match these requirements.

{SEPARATOR}
REQUIREMENTS
{SEPARATOR}

{requirements}

{SEPARATOR}
CANDIDATES ({len(candidates)})
{SEPARATOR}

{candidates_formatted}

{SEPARATOR}
INSTRUCTIONS
{SEPARATOR}

1. STRICTLY follow all requirements above
2. Order your picks by relevance
3. Give a brief explanation of each match
4. Only pick from the candidates listed, by their [index]

Return ONLY valid JSON, no other text:
{{
  "recommendations": [
    {{"candidate_index": 1, "reason": "One or two sentences on why it matches"}}
  ]
}}"""


def build_perfect_match_prompt(preferences: SearchPreferences, candidates: List[Dict[str, Any]]) -> str:
    """
    Build the prompt asking Claude to choose ONE perfect match.

    Args:
        preferences: Validated search preferences
        candidates: Candidate pool (referenced by 1-based index)

    Returns:
        Complete prompt string
    """
    requirements = "\n".join(f"- {line}" for line in _requirements(preferences))
    candidates_formatted = "\n\n".join(
        format_movie_compact(movie, i) for i, movie in enumerate(candidates, 1)
    )

    return f"""Based on a user's preferences, choose their PERFECT {_type_label(preferences)} match from the candidates below.

User Preferences:
- Content Type: {_type_label(preferences)}
{requirements}

{SEPARATOR}
CANDIDATES
{SEPARATOR}

{candidates_formatted}

Please provide:
1. The ONE candidate that best matches, by its [index]
2. A personalized explanation (3-4 sentences) of why it is perfect for them
3. Up to three other candidates they would also enjoy, each with a brief reason

Return ONLY valid JSON, no other text:
{{
  "candidate_index": 1,
  "explanation": "string",
  "similar": [
    {{"candidate_index": 2, "reason": "string (1-2 sentences)"}}
  ]
}}"""


def build_explanation_prompt(preferences: SearchPreferences, movie: Dict[str, Any]) -> str:
    """Plain-text prompt explaining why one title fits the visitor."""
    optional = []
    if preferences.keywords:
        optional.append(f"Keywords: {', '.join(preferences.keywords)}")
    if preferences.specific_year:
        optional.append(f"Released in the year {preferences.specific_year}")
    else:
        optional.append(f"Released between {preferences.year_from} and {preferences.year_to}")
    optional.append(f"Minimum rating: {preferences.rating_min:g}")

    optional_lines = "\n".join(f"- {line}" for line in optional)

    return f"""You are an expert in movie recommendations.

🎯 TASK:
Explain in 3 to 4 sentences why "{movie.get('title', 'this title')}" is a perfect match based on the user's preferences below.
Keep the tone natural, as if you were speaking to a friend.
Do not mention that you're an AI or repeat the preferences explicitly.

🎬 USER PREFERENCES:
- Mood(s): {', '.join(preferences.moods) or 'any'}
- Genre(s): {', '.join(preferences.genres) or 'any'}
- Type: {_type_label(preferences)}
{optional_lines}

📝 RESPONSE:
A short explanation only. No extra formatting. Do not return JSON."""
