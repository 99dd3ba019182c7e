"""
Search preferences submitted by the visitor, and their validation.
"""

from dataclasses import dataclass, field, asdict
from datetime import date
from typing import List, Optional, Dict, Any

from modules.catalog import CONTENT_TYPES, GENRE_IDS, MIN_YEAR, MOODS, canonical_names
from modules.platforms import normalize_platforms


class PreferenceError(ValueError):
    """Raised when search preferences are invalid; the message is shown to the visitor."""
    pass


def _as_list(value, name: str = 'list') -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [v.strip() for v in value.split(',') if v.strip()]
    if not isinstance(value, (list, tuple)):
        raise PreferenceError(f"Invalid {name}: {value}")
    return [str(v).strip() for v in value if str(v).strip()]


def _as_range(value, name: str) -> Dict[str, Any]:
    if value is None or value == '':
        return {}
    if not isinstance(value, dict):
        raise PreferenceError(f"Invalid {name}: {value}")
    return value


def _as_bool(value, name: str) -> bool:
    if value is None or isinstance(value, bool):
        return bool(value)
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str) and value.strip().lower() in ('true', '1', 'yes', 'on'):
        return True
    if isinstance(value, str) and value.strip().lower() in ('false', '0', 'no', 'off', ''):
        return False
    raise PreferenceError(f"Invalid {name}: {value}")


def _as_number(value, cast, name):
    if value is None or value == '':
        return None
    try:
        return cast(value)
    except (TypeError, ValueError):
        raise PreferenceError(f"Invalid {name}: {value}")


@dataclass
class SearchPreferences:
    content_type: Optional[str] = None
    moods: List[str] = field(default_factory=list)
    genres: List[str] = field(default_factory=list)
    keywords: List[str] = field(default_factory=list)
    year_from: int = MIN_YEAR
    year_to: int = field(default_factory=lambda: date.today().year)
    specific_year: Optional[int] = None
    rating_min: float = 0.0
    rating_max: float = 10.0
    services: List[str] = field(default_factory=list)
    is_perfect_match: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SearchPreferences":
        """
        Build preferences from request JSON.

        Accepts nested ranges ({"year_range": {"from", "to"}}, {"rating_range":
        {"min", "max"}}) as well as flat fields.

        Raises:
            PreferenceError: If a field has the wrong type or cannot be parsed
        """
        data = data or {}
        if not isinstance(data, dict):
            raise PreferenceError('Invalid search preferences')
        year_range = _as_range(data.get('year_range'), 'year range')
        rating_range = _as_range(data.get('rating_range'), 'rating range')

        year_from = _as_number(year_range.get('from', data.get('year_from')), int, 'year')
        year_to = _as_number(year_range.get('to', data.get('year_to')), int, 'year')
        rating_min = _as_number(rating_range.get('min', data.get('rating_min')), float, 'rating')
        rating_max = _as_number(rating_range.get('max', data.get('rating_max')), float, 'rating')

        content_type = data.get('content_type')
        if content_type is not None and not isinstance(content_type, str):
            raise PreferenceError(f"Unknown content type: {content_type}")
        if content_type is not None:
            content_type = content_type.strip().lower() or None
            # Accept the display labels too
            if content_type == 'movies':
                content_type = 'movie'
            elif content_type in ('tv series', 'series'):
                content_type = 'tv'

        return cls(
            content_type=content_type,
            moods=canonical_names(_as_list(data.get('moods'), 'moods'), MOODS),
            genres=canonical_names(_as_list(data.get('genres'), 'genres'), GENRE_IDS),
            keywords=_as_list(data.get('keywords'), 'keywords'),
            year_from=MIN_YEAR if year_from is None else year_from,
            year_to=date.today().year if year_to is None else year_to,
            specific_year=_as_number(data.get('specific_year'), int, 'year'),
            rating_min=0.0 if rating_min is None else rating_min,
            rating_max=10.0 if rating_max is None else rating_max,
            services=normalize_platforms(_as_list(data.get('services'), 'services')),
            is_perfect_match=_as_bool(data.get('is_perfect_match'), 'perfect match flag'),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def validate(preferences: SearchPreferences, is_premium: bool) -> None:
    """
    Validate preferences for the visitor's tier.

    Raises:
        PreferenceError: With a visitor-facing message
    """
    if not preferences.content_type:
        raise PreferenceError('Content type is required')

    if preferences.content_type not in CONTENT_TYPES:
        raise PreferenceError(f"Unknown content type: {preferences.content_type}")

    if not preferences.genres and not preferences.moods:
        raise PreferenceError('At least one genre or mood is required')

    unknown = [g for g in preferences.genres if g not in GENRE_IDS]
    if unknown:
        raise PreferenceError(f"Unknown genre: {', '.join(unknown)}")

    unknown = [m for m in preferences.moods if m not in MOODS]
    if unknown:
        raise PreferenceError(f"Unknown mood: {', '.join(unknown)}")

    if preferences.year_from > preferences.year_to:
        raise PreferenceError('Invalid year range')

    if preferences.rating_min > preferences.rating_max:
        raise PreferenceError('Invalid rating range')

    if not 0 <= preferences.rating_min <= 10 or not 0 <= preferences.rating_max <= 10:
        raise PreferenceError('Invalid rating range')

    if not is_premium:
        if preferences.keywords:
            raise PreferenceError('Keywords are a premium feature')
        if preferences.specific_year:
            raise PreferenceError('Specific year selection is a premium feature')
        if preferences.is_perfect_match:
            raise PreferenceError('Perfect match is a premium feature')
