"""
Candidate filtering and scoring.
Ranks discovered titles against the visitor's preferences before
enrichment, so only the best few get the expensive detail lookups.
"""

import math
from typing import List, Dict, Any

from modules.catalog import genre_ids_for
from modules.preferences import SearchPreferences

# Points per component; they add up to 100
SCORING_WEIGHTS = {
    'genre': 35,
    'mood': 20,
    'rating': 20,
    'popularity': 10,
    'votes': 10,
    'service': 5,
}

# Vote count at which the vote component saturates
VOTE_CONFIDENCE = 1000


def _overlap(movie_ids: set, wanted: set) -> float:
    if not wanted:
        return 0.0
    return len(movie_ids & wanted) / len(wanted)


def score_movie(movie: Dict[str, Any], preferences: SearchPreferences) -> float:
    """
    Score a movie from 0 to 100 against the visitor's preferences.

    Args:
        movie: Movie dictionary (see TMDBClient._to_movie)
        preferences: Search preferences

    Returns:
        Score rounded to one decimal
    """
    movie_genres = set(movie.get('genre_ids') or [])

    requested_genres = set(genre_ids_for(preferences.genres, content_type=preferences.content_type))
    mood_genres = set(genre_ids_for((), preferences.moods, content_type=preferences.content_type))

    # When only moods (or only genres) were chosen, that side gets the full weight
    if requested_genres and mood_genres:
        genre_score = SCORING_WEIGHTS['genre'] * _overlap(movie_genres, requested_genres)
        mood_score = SCORING_WEIGHTS['mood'] * _overlap(movie_genres, mood_genres)
    elif requested_genres:
        genre_score = (SCORING_WEIGHTS['genre'] + SCORING_WEIGHTS['mood']) * _overlap(movie_genres, requested_genres)
        mood_score = 0.0
    else:
        genre_score = 0.0
        mood_score = (SCORING_WEIGHTS['genre'] + SCORING_WEIGHTS['mood']) * _overlap(movie_genres, mood_genres)

    rating = float(movie.get('rating') or 0)
    span = preferences.rating_max - preferences.rating_min
    if span > 0:
        position = (rating - preferences.rating_min) / span
    else:
        position = 1.0 if rating >= preferences.rating_min else 0.0
    rating_score = SCORING_WEIGHTS['rating'] * min(max(position, 0.0), 1.0)

    # log10(1000) = 3, so popularity 1000+ maxes out
    popularity = float(movie.get('popularity') or 0)
    popularity_score = SCORING_WEIGHTS['popularity'] * min(math.log10(1 + popularity) / 3, 1.0)

    votes = int(movie.get('vote_count') or 0)
    vote_score = SCORING_WEIGHTS['votes'] * min(votes / VOTE_CONFIDENCE, 1.0)

    service_score = 0.0
    if preferences.services and set(movie.get('streaming_platforms') or []) & set(preferences.services):
        service_score = SCORING_WEIGHTS['service']

    total = genre_score + mood_score + rating_score + popularity_score + vote_score + service_score
    return round(min(max(total, 0.0), 100.0), 1)


def filter_candidates(movies: List[Dict[str, Any]], preferences: SearchPreferences) -> List[Dict[str, Any]]:
    """
    Drop titles outside the requested year and rating ranges, and duplicates.

    Discovery pads the ranges for recall; this applies the exact ones.
    """
    seen = set()
    filtered = []

    for movie in movies:
        tmdb_id = movie.get('tmdb_id') or movie.get('id')
        if tmdb_id in seen:
            continue

        year = movie.get('year')
        if preferences.specific_year:
            if year != preferences.specific_year:
                continue
        elif year is None or not preferences.year_from <= year <= preferences.year_to:
            continue

        rating = float(movie.get('rating') or 0)
        if not preferences.rating_min <= rating <= preferences.rating_max:
            continue

        seen.add(tmdb_id)
        filtered.append(movie)

    return filtered


def rank_candidates(movies: List[Dict[str, Any]], preferences: SearchPreferences) -> List[Dict[str, Any]]:
    """Score movies (adds 'match_score') and sort best first, popularity breaking ties."""
    scored = [{**movie, 'match_score': score_movie(movie, preferences)} for movie in movies]
    scored.sort(key=lambda m: (m['match_score'], m.get('popularity') or 0), reverse=True)
    return scored
