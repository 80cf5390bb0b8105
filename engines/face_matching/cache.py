"""
Descriptor Cache — process-wide identity-key → descriptor map.

Constructed once at startup and shared by reference with the MatchEngine.
Entries live until deleted or cleared; there is no eviction.
"""

import logging
import threading
from typing import Dict, List, Optional

import numpy as np

logger = logging.getLogger(__name__)


class DescriptorCache:
    """
    Thread-safe in-memory cache of face descriptors keyed by identity.

    Concurrent writers to the same key are last-write-wins; every write for a
    key is derived from the same portrait image.
    """

    def __init__(self):
        self._descriptors: Dict[str, np.ndarray] = {}
        self._lock = threading.RLock()

    def get(self, key: str) -> Optional[np.ndarray]:
        with self._lock:
            return self._descriptors.get(key)

    def set(self, key: str, descriptor: np.ndarray) -> None:
        with self._lock:
            self._descriptors[key] = descriptor
        logger.debug(f"DescriptorCache: stored descriptor for {key}")

    def delete(self, key: str) -> None:
        """Remove a descriptor. Absent keys are ignored."""
        with self._lock:
            self._descriptors.pop(key, None)

    def clear(self) -> int:
        """Remove every descriptor and return how many were removed."""
        with self._lock:
            removed = len(self._descriptors)
            self._descriptors.clear()
        logger.info(f"DescriptorCache: cleared {removed} entries")
        return removed

    def size(self) -> int:
        with self._lock:
            return len(self._descriptors)

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._descriptors.keys())

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._descriptors

    def __len__(self) -> int:
        return self.size()
