"""
Form constants: moods, genres, keyword categories and presets offered to
visitors, and how they map onto TMDB genre ids.
"""

from datetime import date
from typing import Dict, List, Iterable

CONTENT_TYPES = {
    'movie': 'Movies',
    'tv': 'TV Series',
}

# App genre name -> TMDB genre id
GENRE_IDS: Dict[str, int] = {
    'Action': 28,
    'Adventure': 12,
    'Animation': 16,
    'Biography': 36,
    'Comedy': 35,
    'Crime': 80,
    'Documentary': 99,
    'Drama': 18,
    'Family': 10751,
    'Fantasy': 14,
    'Film-Noir': 9648,
    'History': 36,
    'Horror': 27,
    'Musical': 10402,
    'Mystery': 9648,
    'Romance': 10749,
    'Sci-Fi': 878,
    'Sport': 10751,
    'Superhero': 28,
    'Thriller': 53,
    'War': 10752,
    'Western': 37,
}

# Movie genre ids that /discover/tv does not know -> closest TV genre id
TV_GENRE_IDS: Dict[int, int] = {
    28: 10759,     # Action -> Action & Adventure
    12: 10759,     # Adventure -> Action & Adventure
    14: 10765,     # Fantasy -> Sci-Fi & Fantasy
    878: 10765,    # Science Fiction -> Sci-Fi & Fantasy
    10752: 10768,  # War -> War & Politics
    36: 10768,     # History -> War & Politics
    27: 9648,      # Horror -> Mystery
    53: 9648,      # Thriller -> Mystery
    10749: 18,     # Romance -> Drama
    10402: 35,     # Music -> Comedy
}

# TMDB's own names for ids the app genres alias onto
TMDB_GENRE_NAMES: Dict[int, str] = {
    28: 'Action',
    12: 'Adventure',
    16: 'Animation',
    35: 'Comedy',
    80: 'Crime',
    99: 'Documentary',
    18: 'Drama',
    10751: 'Family',
    14: 'Fantasy',
    36: 'History',
    27: 'Horror',
    10402: 'Musical',
    9648: 'Mystery',
    10749: 'Romance',
    878: 'Sci-Fi',
    53: 'Thriller',
    10752: 'War',
    37: 'Western',
    # TV-only genres
    10759: 'Action',
    10762: 'Family',
    10765: 'Sci-Fi',
    10768: 'War',
}

MOODS: Dict[str, Dict[str, object]] = {
    'Happy': {
        'genres': [35, 10751],
        'keywords': ['feel-good', 'uplifting', 'heartwarming'],
        'tooltip': "Happiness is contagious, let's spread it with a feel-good movie!",
    },
    'Relaxed': {
        'genres': [18],
        'keywords': ['slow-paced', 'calm', 'peaceful'],
        'tooltip': "No stress, just movies. Let's keep the vibe smooth and easy!",
    },
    'Excited': {
        'genres': [28, 12],
        'keywords': ['thrilling', 'fast-paced', 'intense'],
        'tooltip': "Fasten your seatbelt, this movie ride is about to get wild!",
    },
    'Romantic': {
        'genres': [10749],
        'keywords': ['love', 'romantic', 'relationship'],
        'tooltip': "Get ready for butterflies, grand gestures, and maybe some happy tears!",
    },
    'Thoughtful': {
        'genres': [18, 9648],
        'keywords': ['thought-provoking', 'philosophical', 'deep'],
        'tooltip': "Movies that make you think, because sometimes popcorn isn't enough!",
    },
    'Adventurous': {
        'genres': [12, 14],
        'keywords': ['exploration', 'journey', 'quest'],
        'tooltip': "Ideal if you're craving danger (the kind you can experience in sweatpants).",
    },
    'Nostalgic': {
        'genres': [],
        'keywords': ['classic', 'retro', 'timeless'],
        'tooltip': "Let's dust off the classics and relive some childhood magic!",
    },
    'Mysterious': {
        'genres': [9648, 53],
        'keywords': ['suspense', 'twist', 'enigmatic'],
        'tooltip': "Secrets, clues, and shocking reveals. Your detective training starts now!",
    },
}

# Premium-only theme keywords
KEYWORD_CATEGORIES: Dict[str, List[str]] = {
    'Adult Animation': ['Complex Narratives', 'Dark Fantasy', 'Mature Themes', 'Satire', 'Stylized Violence'],
    'Cyberpunk': ['Artificial Intelligence', 'Cybernetic Enhancements', 'Hackers', 'Mega-Corporations', 'Virtual Reality'],
    'Espionage': ['Clandestine Missions', 'Counter-espionage', 'Industrial Espionage', 'Infiltration', 'Secret Agents'],
    'Film Noir': ['Crime Mysteries', 'Dark Atmosphere', 'Femme Fatale', 'Moral Ambiguity', 'Private Detectives'],
    'Heist': ['Double-Crossing', 'Escape', 'Heist Planning', 'Robbery', 'Thief Teams'],
    'Martial Arts': ['Fighting Tournaments', 'Karate', 'Kung Fu', 'Martial Arts Masters', 'Samurai'],
    'Mockumentary': ['Absurd Humor', 'Fake Documentaries', 'Fictional Interviews', 'Parody', 'Social Satire'],
    'Post-Apocalyptic': ['Collapsed Societies', 'Nuclear Catastrophes', 'Pandemics', 'Scarce Resources', 'Survivors'],
    'Road Movie': ['Friendship', 'Journey of Self-Discovery', 'Long Road Trips', 'Personal Growth', 'Unexpected Encounters'],
}

TIME_PRESETS = [
    {'label': 'Classic Era (1920-1959)', 'from': 1920, 'to': 1959},
    {'label': 'New Hollywood (1960-1979)', 'from': 1960, 'to': 1979},
    {'label': 'Blockbuster Era (1980-1999)', 'from': 1980, 'to': 1999},
    {'label': 'Modern Cinema (2000-2010)', 'from': 2000, 'to': 2010},
    {'label': 'Contemporary (2011-Present)', 'from': 2011, 'to': date.today().year},
]

RATING_PRESETS = [
    {'label': 'Any Rating', 'min': 0, 'max': 10},
    {'label': 'Good (5+)', 'min': 5, 'max': 10},
    {'label': 'Very Good (7+)', 'min': 7, 'max': 10},
    {'label': 'Excellent (8+)', 'min': 8, 'max': 10},
]

MIN_YEAR = 1920


def media_genre_id(genre_id: int, content_type: str = 'movie') -> int:
    """The genre id TMDB uses for this content type."""
    if content_type == 'tv':
        return TV_GENRE_IDS.get(genre_id, genre_id)
    return genre_id


def genre_ids_for(genres: Iterable[str], moods: Iterable[str] = (), content_type: str = 'movie') -> List[int]:
    """TMDB genre ids for the chosen genres, then the chosen moods, without duplicates."""
    ids: List[int] = []
    for genre in genres:
        genre_id = GENRE_IDS.get(genre)
        if genre_id:
            genre_id = media_genre_id(genre_id, content_type)
            if genre_id not in ids:
                ids.append(genre_id)

    for mood in moods:
        for genre_id in MOODS.get(mood, {}).get('genres', []):
            genre_id = media_genre_id(genre_id, content_type)
            if genre_id not in ids:
                ids.append(genre_id)

    return ids


def canonical_names(names: Iterable[str], choices: Iterable[str]) -> List[str]:
    """Match names to the catalog's spelling ignoring case; unknown names are kept as given."""
    by_lower = {choice.lower(): choice for choice in choices}
    return [by_lower.get(name.lower(), name) for name in names]


def mood_keywords(moods: Iterable[str]) -> List[str]:
    return [kw for mood in moods for kw in MOODS.get(mood, {}).get('keywords', [])]


def genre_names(genre_ids: Iterable[int]) -> List[str]:
    """Map TMDB genre ids to display names, skipping unknown ids."""
    names = []
    for genre_id in genre_ids:
        name = TMDB_GENRE_NAMES.get(genre_id)
        if name and name not in names:
            names.append(name)
    return names


def form_options() -> Dict[str, object]:
    """Everything the search form needs, in one payload."""
    from modules.platforms import APPROVED_PLATFORMS

    return {
        'content_types': [{'value': k, 'label': v} for k, v in CONTENT_TYPES.items()],
        'moods': [{'name': name, 'tooltip': mood['tooltip']} for name, mood in MOODS.items()],
        'genres': list(GENRE_IDS.keys()),
        'keyword_categories': KEYWORD_CATEGORIES,
        'streaming_services': list(APPROVED_PLATFORMS.keys()),
        'time_presets': TIME_PRESETS,
        'rating_presets': RATING_PRESETS,
    }
