"""Persistent MSAL token cache for the Microsoft 365 importer."""

import logging
import sys
from pathlib import Path
from typing import Optional

from msal_extensions import (
    FilePersistence,
    KeychainPersistence,
    LibsecretPersistence,
    PersistedTokenCache,
)

from ..utils.exceptions import AuthenticationError

logger = logging.getLogger(__name__)

SERVICE_NAME = "special_dates"


class TokenCacheManager:
    """Owns the on-disk token cache used by M365AuthProvider."""

    def __init__(
        self,
        cache_location: Path,
        cache_name: str = "special_dates_cache",
        encrypted: bool = True,
    ):
        """
        Args:
            cache_location: Directory holding the cache file
            cache_name: Base name of the cache file
            encrypted: Use the OS secret store where one is available
        """
        self.cache_location = Path(cache_location)
        self.cache_name = cache_name
        self.encrypted = encrypted
        self._cache: Optional[PersistedTokenCache] = None

    @property
    def cache_file(self) -> Path:
        suffix = "bin" if self.encrypted else "json"
        return self.cache_location / f"{self.cache_name}.{suffix}"

    def _persistence(self):
        if not self.encrypted or sys.platform == "win32":
            return FilePersistence(str(self.cache_file))
        if sys.platform == "darwin":
            return KeychainPersistence(str(self.cache_file), SERVICE_NAME, self.cache_name)
        try:
            return LibsecretPersistence(
                str(self.cache_file),
                schema_name=SERVICE_NAME,
                attributes={"app": self.cache_name},
            )
        except (ImportError, ValueError, RuntimeError) as e:
            # Headless Linux boxes often lack a secret service
            logger.warning(f"libsecret unavailable ({e}), using plain file token cache")
            return FilePersistence(str(self.cache_file))

    def get_cache(self) -> PersistedTokenCache:
        """
        Get or create the token cache.

        Raises:
            AuthenticationError: If the cache cannot be initialized
        """
        if self._cache is not None:
            return self._cache

        try:
            self.cache_location.mkdir(parents=True, exist_ok=True)
            self._cache = PersistedTokenCache(self._persistence())
        except OSError as e:
            raise AuthenticationError(f"Failed to initialize token cache: {e}") from e

        logger.info(f"Token cache initialized at {self.cache_location}")
        return self._cache

    def clear_cache(self) -> None:
        """Forget cached tokens, in memory and on disk."""
        self._cache = None
        if self.cache_file.exists():
            self.cache_file.unlink()
        logger.info("Token cache cleared")
