"""
Configuration management for the EzStreamTo recommender service.
Loads environment variables and provides centralized config access.
"""

import os
import logging
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


def _env_list(name: str, default: str) -> list:
    return [item.strip() for item in os.getenv(name, default).split(",") if item.strip()]


class Config:
    """Application configuration class."""

    # API Keys
    ANTHROPIC_API_KEY = os.getenv("ANTHROPIC_API_KEY")
    TMDB_API_KEY = os.getenv("TMDB_API_KEY")
    BMC_WEBHOOK_SECRET = os.getenv("BMC_WEBHOOK_SECRET")

    # Environment
    ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
    DEBUG = _env_bool("DEBUG", "False")
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

    # Database
    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./ezstreamto.db")

    # TMDB Configuration
    TMDB_BASE_URL = "https://api.themoviedb.org/3"
    TMDB_IMAGE_BASE_URL = "https://image.tmdb.org/t/p/w500"
    TMDB_BACKDROP_BASE_URL = "https://image.tmdb.org/t/p/original"
    TMDB_RATE_LIMIT = 40  # requests per window
    TMDB_RATE_WINDOW = 10  # seconds
    FALLBACK_IMAGE = "https://images.unsplash.com/photo-1489599849927-2ee91cede3ba"

    # Claude Configuration
    CLAUDE_MODEL = os.getenv("CLAUDE_MODEL", "claude-3-5-haiku-20241022")
    CLAUDE_MAX_TOKENS = 1024
    CLAUDE_TEMPERATURE = 0.7

    # Search limits
    FREE_SEARCH_LIMIT = int(os.getenv("FREE_SEARCH_LIMIT", "5"))
    BASIC_RESULTS_PER_SEARCH = 5
    PREMIUM_RESULTS_PER_SEARCH = 10
    QUOTA_RESET_POLICY = os.getenv("QUOTA_RESET_POLICY", "lifetime")  # lifetime | daily
    QUOTA_FAIL_OPEN = _env_bool("QUOTA_FAIL_OPEN", "True")

    # Premium (Buy Me a Coffee)
    MIN_SUPPORT_AMOUNT = float(os.getenv("MIN_SUPPORT_AMOUNT", "5"))
    DONATION_URL = os.getenv("DONATION_URL", "https://www.buymeacoffee.com/ezstreamto")
    SITE_URL = os.getenv("SITE_URL", "https://ezstreamto.com")

    # Visitor identification
    IP_ECHO_URL = "https://api.ipify.org?format=json"
    IP_CACHE_TTL = 300  # seconds
    # Ask the echo service when the peer address is private (local runs)
    RESOLVE_PUBLIC_IP = _env_bool("RESOLVE_PUBLIC_IP", "False")
    VISITOR_COOKIE = "visitor_id"

    # Application Settings
    REQUEST_TIMEOUT = 10  # seconds
    ALLOWED_ORIGINS = _env_list(
        "ALLOWED_ORIGINS",
        "https://ezstreamto.com,https://www.ezstreamto.com,http://localhost:3000,http://localhost:5173",
    )

    # Cache Settings
    ENABLE_CACHE = _env_bool("ENABLE_CACHE", "True")
    CACHE_TTL = 300  # Time-to-live in seconds (5 minutes)
    TMDB_CACHE_TTL = 3600  # TMDB responses (1 hour)

    @classmethod
    def validate(cls):
        """Return a list of missing required settings."""
        errors = []

        if not cls.TMDB_API_KEY:
            errors.append("TMDB_API_KEY is not set")

        if not cls.ANTHROPIC_API_KEY:
            errors.append("ANTHROPIC_API_KEY is not set (Perfect Match will use fallback picks)")

        if not cls.BMC_WEBHOOK_SECRET:
            errors.append("BMC_WEBHOOK_SECRET is not set (donation webhooks will be rejected)")

        if cls.QUOTA_RESET_POLICY not in ("lifetime", "daily"):
            errors.append(f"QUOTA_RESET_POLICY must be 'lifetime' or 'daily', got '{cls.QUOTA_RESET_POLICY}'")

        return errors


def configure_logging(level: str = None):
    """Configure root logging once for the service."""
    logging.basicConfig(
        level=getattr(logging, (level or Config.LOG_LEVEL), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
