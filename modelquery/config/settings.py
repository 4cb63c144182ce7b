"""
Settings loading for modelquery.

Settings come from the environment once per process.
"""
from __future__ import annotations

import logging
import os
from functools import lru_cache

from .schemas import QuerySettings

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


@lru_cache()
def get_settings() -> QuerySettings:
    """
    Get engine settings from environment.

    Uses lru_cache for singleton pattern; call get_settings.cache_clear()
    in tests that change the environment.
    """
    return QuerySettings(
        # Service
        service_name=os.getenv("MODELQUERY_SERVICE_NAME", "modelquery"),
        environment=os.getenv("MODELQUERY_ENVIRONMENT", "development"),
        debug=_env_bool("MODELQUERY_DEBUG", "false"),
        log_level=os.getenv("MODELQUERY_LOG_LEVEL", "INFO"),
        # Fan-out and pagination
        concurrency=int(os.getenv("MODELQUERY_CONCURRENCY", "5")),
        page_size=int(os.getenv("MODELQUERY_PAGE_SIZE", "25")),
        # Cache
        cache_enabled=_env_bool("MODELQUERY_CACHE_ENABLED", "true"),
        cache_ttl_seconds=int(os.getenv("MODELQUERY_CACHE_TTL_SECONDS", "300")),
        cache_maxsize=int(os.getenv("MODELQUERY_CACHE_MAXSIZE", "10000")),
    )
