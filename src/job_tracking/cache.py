from typing import Dict, Optional

from job_tracking.domain.registry import RegistryEntry


class RegistryCache:
    """
    Read-through map from job name to registry entry.

    Entries never expire; they are dropped only by `invalidate` or `clear`.
    Every operation is a single dict call, so invocation threads can share one
    instance without an external lock.
    """

    def __init__(self):
        self._entries: Dict[str, RegistryEntry] = {}

    def get(self, name: str) -> Optional[RegistryEntry]:
        return self._entries.get(name)

    def put(self, entry: RegistryEntry) -> RegistryEntry:
        """
        Cache an entry unless one is already cached under its name.

        Returns the entry that ends up cached, so concurrent callers agree on one instance.
        """
        return self._entries.setdefault(entry.name, entry)

    def replace(self, entry: RegistryEntry) -> None:
        self._entries[entry.name] = entry

    def invalidate(self, name: str) -> None:
        self._entries.pop(name, None)

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, name: object) -> bool:
        return name in self._entries

    def __len__(self) -> int:
        return len(self._entries)
