"""
Durable key-value storage backed by diskcache
"""

import logging
import os
from typing import Any, Optional

from diskcache import Cache

from pulsejobs.core.config import settings

logger = logging.getLogger(__name__)


class DurableStore:
    """Process-wide key-value store that survives restarts.

    Values are written as-is; callers that need a stable wire format (the job
    cache stores a JSON array) serialize before writing.
    """

    def __init__(self, directory: Optional[str] = None):
        self.directory = directory or settings.CACHE_DIR
        os.makedirs(self.directory, exist_ok=True)
        self._cache = Cache(self.directory)
        logger.debug(f"Durable store opened at {self.directory}")

    def get(self, key: str, default: Any = None) -> Any:
        return self._cache.get(key, default=default)

    def set(self, key: str, value: Any) -> None:
        self._cache.set(key, value)

    def delete(self, key: str) -> bool:
        return bool(self._cache.delete(key))

    def __contains__(self, key: str) -> bool:
        return key in self._cache

    def close(self) -> None:
        self._cache.close()
