"""
Configuration for the Explore engine.

Everything comes from the environment; a `.env` file next to the process is
loaded first, as the app factory does.
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv

from sources.client import DEFAULT_SERVER_URL


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.environ.get(name, default))
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.environ.get(name, default))
    except ValueError:
        return default


@dataclass
class ExploreConfig:
    server_url: str = DEFAULT_SERVER_URL
    preferred_lang: str = "en"
    fallback_lang: str = "en"

    # Transport
    query_retries: int = 8
    query_retry_delay: float = 0.5
    query_timeout: float = 30.0

    # Fan-out widths
    popular_source_limit: int = 2
    category_source_limit: int = 2
    genre_drill_source_limit: int = 8
    genre_drill_pages: int = 2

    @classmethod
    def from_env(cls, load_env_file: bool = True) -> "ExploreConfig":
        if load_env_file:
            load_dotenv()
        return cls(
            server_url=os.environ.get('SUWAYOMI_URL', DEFAULT_SERVER_URL).rstrip('/'),
            preferred_lang=os.environ.get('PREFERRED_LANG', 'en') or 'en',
            fallback_lang=os.environ.get('FALLBACK_LANG', 'en') or 'en',
            query_retries=max(1, _env_int('QUERY_RETRIES', 8)),
            query_retry_delay=_env_float('QUERY_RETRY_DELAY', 0.5),
            query_timeout=_env_float('QUERY_TIMEOUT', 30.0),
            popular_source_limit=max(0, _env_int('POPULAR_SOURCE_LIMIT', 2)),
            category_source_limit=max(0, _env_int('CATEGORY_SOURCE_LIMIT', 2)),
            genre_drill_source_limit=max(0, _env_int('GENRE_DRILL_SOURCE_LIMIT', 8)),
            genre_drill_pages=max(1, _env_int('GENRE_DRILL_PAGES', 2)),
        )
