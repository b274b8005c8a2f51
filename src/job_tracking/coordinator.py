"""
Race-free first-time registration of jobs.

Many instances can observe a job's first execution at the same moment and all
try to create its registry entry. The coordinator serializes creation behind a
single shared lock, re-checks the store under that lock, and caches the result
so that every later call for the same name is a dictionary lookup.
"""

import logging
import time
from typing import Callable, Optional

from job_tracking.cache import RegistryCache
from job_tracking.domain.registry import JobMetadata, RegistryEntry
from job_tracking.errors import DuplicateRegistryEntryError
from job_tracking.locks.protocol import LockProvider, hold_lock
from job_tracking.settings import LockSettings
from job_tracking.storages.protocol import RegistryStore

logger = logging.getLogger(__name__)

REGISTRY_LOCK_NAME = "job-registry-create"


class RegistryCoordinator:
    def __init__(
        self,
        store: RegistryStore,
        cache: RegistryCache,
        lock_provider: Optional[LockProvider],
        lock_settings: LockSettings,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.store = store
        self.cache = cache
        self.lock_provider = lock_provider
        self.lock_settings = lock_settings
        self._sleep = sleep

    def ensure(self, metadata: JobMetadata) -> RegistryEntry:
        """
        Return the registry entry for a job, creating it if no instance has yet.
        """
        cached = self.cache.get(metadata.name)
        if cached is not None:
            if cached.needs_metadata_update(metadata):
                return self._update_metadata(cached, metadata)
            return cached

        existing = self.store.find_by_name(metadata.name)
        if existing is not None:
            if existing.needs_metadata_update(metadata):
                return self._update_metadata(existing, metadata)
            return self.cache.put(existing)

        if self.lock_provider is None:
            return self.cache.put(self._create_or_fetch(metadata))
        return self.cache.put(self._create_with_lock(metadata))

    def _create_with_lock(self, metadata: JobMetadata) -> RegistryEntry:
        attempts = self.lock_settings.max_retries + 1
        for attempt in range(attempts):
            if attempt > 0:
                self._sleep(self.lock_settings.delay_for(attempt - 1))
                existing = self.store.find_by_name(metadata.name)
                if existing is not None:
                    logger.debug("Found registry entry for '%s' after %d retries", metadata.name, attempt)
                    return existing

            with hold_lock(
                self.lock_provider,
                REGISTRY_LOCK_NAME,
                self.lock_settings.min_hold,
                self.lock_settings.max_hold,
            ) as acquired:
                if acquired:
                    existing = self.store.find_by_name(metadata.name)
                    if existing is not None:
                        return existing
                    return self._create_or_fetch(metadata)

            logger.debug("Registry lock busy for '%s' (attempt %d/%d)", metadata.name, attempt + 1, attempts)

        logger.warning(
            "Registry lock not acquired after %d attempts, creating '%s' without it",
            attempts, metadata.name,
        )
        return self._create_or_fetch(metadata)

    def _create_or_fetch(self, metadata: JobMetadata) -> RegistryEntry:
        try:
            saved = self.store.save(RegistryEntry.from_metadata(metadata))
        except DuplicateRegistryEntryError:
            existing = self.store.find_by_name(metadata.name)
            if existing is None:
                raise
            logger.debug("Registry entry for '%s' was created concurrently, using it", metadata.name)
            return existing
        logger.info("Created registry entry for job '%s'", metadata.name)
        return saved

    def _update_metadata(self, entry: RegistryEntry, metadata: JobMetadata) -> RegistryEntry:
        updated = self.store.update_metadata(entry.id, metadata)
        if updated > 0:
            logger.info(
                "Updated registry metadata for job '%s' (owner=%s.%s, schedule=%s)",
                metadata.name, metadata.owner_class, metadata.owner_method, metadata.schedule_expression,
            )
        refreshed = self.store.find_by_name(metadata.name) or entry.with_metadata(metadata)
        self.cache.replace(refreshed)
        return refreshed
