"""
Streaming platform names.
TMDB reports dozens of provider variants; the app only shows eight.
"""

from typing import Dict, List, Optional, Any, Iterable

APPROVED_PLATFORMS: Dict[str, Dict[str, Any]] = {
    'Netflix': {
        'short_name': 'Netflix',
        'color': '#E50914',
        'matches': ['Netflix', 'Netflix Basic', 'Netflix Premium', 'Netflix with ads', 'Netflix Kids'],
    },
    'Amazon Prime': {
        'short_name': 'Prime',
        'color': '#0073E6',
        'matches': ['Amazon Prime', 'Amazon Prime Video', 'Prime Video', 'Amazon Prime with ads', 'Amazon Video'],
    },
    'Disney+': {
        'short_name': 'Disney+',
        'color': '#113CCF',
        'matches': ['Disney+', 'Disney Plus', 'Disney+ Basic', 'Disney+ Premium'],
    },
    'HBO Max': {
        'short_name': 'HBO',
        'color': '#6E00F5',
        'matches': ['HBO Max', 'HBO', 'Max', 'HBO with ads', 'HBO Go', 'HBO Now'],
    },
    'Apple TV+': {
        'short_name': 'Apple TV+',
        'color': '#333333',
        'matches': ['Apple TV+', 'Apple TV Plus', 'Apple TV', 'iTunes'],
    },
    'Hulu': {
        'short_name': 'Hulu',
        'color': '#1CE783',
        'matches': ['Hulu', 'Hulu (No Ads)', 'Hulu with ads', 'Hulu Plus'],
    },
    'Paramount+': {
        'short_name': 'Para+',
        'color': '#0057B8',
        'matches': ['Paramount+', 'Paramount Plus', 'Paramount+ Premium', 'Paramount Network'],
    },
    'Peacock': {
        'short_name': 'Peacock',
        'color': '#0096A5',
        'matches': ['Peacock', 'Peacock Premium', 'Peacock Premium Plus', 'Peacock TV'],
    },
}

# Provider groups in TMDB watch/providers, in display priority
PROVIDER_GROUPS = ('flatrate', 'free', 'ads', 'rent', 'buy')

_ALIASES: Dict[str, str] = {
    alias.lower(): canonical
    for canonical, platform in APPROVED_PLATFORMS.items()
    for alias in platform['matches']
}


def normalize_platform_name(name: Optional[str]) -> Optional[str]:
    """
    Map a provider name to one of the approved platforms.

    Args:
        name: Provider name as TMDB reports it

    Returns:
        Canonical platform name, or None if it is not an approved platform
    """
    if not name:
        return None
    return _ALIASES.get(name.strip().lower())


def normalize_platforms(names: Iterable[str]) -> List[str]:
    """Normalize a list of names, dropping unknown ones and duplicates (order kept)."""
    platforms = []
    for name in names:
        canonical = normalize_platform_name(name)
        if canonical and canonical not in platforms:
            platforms.append(canonical)
    return platforms


def extract_platforms(providers: Optional[Dict[str, Any]], regions: Iterable[str] = ('US', 'GB')) -> List[str]:
    """
    Pull approved platforms out of a TMDB watch/providers payload.

    Args:
        providers: The 'results' mapping of country code -> provider groups
        regions: Countries to try, first one present wins

    Returns:
        Canonical platform names
    """
    if not providers:
        return []

    region_data = None
    for region in regions:
        if providers.get(region):
            region_data = providers[region]
            break

    if not region_data:
        return []

    names = [
        entry.get('provider_name')
        for group in PROVIDER_GROUPS
        for entry in region_data.get(group, []) or []
    ]
    return normalize_platforms(names)
