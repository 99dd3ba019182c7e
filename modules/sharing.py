"""
Social share links for result cards.
"""

import random
from typing import Dict, Any, Optional
from urllib.parse import urlencode

from config import Config

SITE_SHARE_MESSAGES = [
    "🎬 Can't decide what to watch? EzStreamTo finds it in seconds! 🍿",
    "🍿 Tell EzStreamTo your mood, get the perfect movie. Try it!",
    "📺 Stop scrolling, start watching. EzStreamTo picks for you!",
    "🎥 Movie night sorted! Find where to stream it on EzStreamTo.",
]


def share_message(movie: Dict[str, Any], site_url: Optional[str] = None) -> str:
    site_url = site_url or Config.SITE_URL
    return f'🎬 Found "{movie.get("title", "a great pick")}" on EzStreamTo! Check where to watch it! 🍿\n\n{site_url}'


def share_links(movie: Dict[str, Any], site_url: Optional[str] = None) -> Dict[str, str]:
    """
    Facebook, Twitter/X and WhatsApp share URLs for one title.

    Args:
        movie: Movie dictionary
        site_url: Site origin to link back to (defaults to Config.SITE_URL)

    Returns:
        Mapping of network name -> share URL
    """
    site_url = site_url or Config.SITE_URL
    message = share_message(movie, site_url)

    return {
        'facebook': 'https://www.facebook.com/sharer/sharer.php?' + urlencode({'u': site_url, 'quote': message}),
        'twitter': 'https://twitter.com/intent/tweet?' + urlencode({'url': site_url, 'text': message}),
        'whatsapp': 'https://api.whatsapp.com/send?' + urlencode({'text': message}),
    }


def random_share_message() -> str:
    return random.choice(SITE_SHARE_MESSAGES)
