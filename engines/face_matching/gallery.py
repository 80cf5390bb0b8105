"""
Gallery — enrolled identities and the providers that supply them.

The surrounding application owns user records; the engine only needs an
opaque key and a portrait URL per identity. Display fields ride along for
reporting and never influence matching.
"""

import json
import logging
import os
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Identity:
    """An enrollable user: opaque key, optional portrait, display fields."""
    key: str
    image_url: Optional[str] = None
    name: str = ''
    extra: Dict = field(default_factory=dict, compare=False, hash=False)

    @property
    def has_portrait(self) -> bool:
        return bool(self.image_url)

    @classmethod
    def from_record(cls, record: dict) -> 'Identity':
        """
        Build an Identity from a user record.

        Accepts {'_id'|'id'|'key', 'image'|'image_url', 'firstName', 'lastName', 'name', ...};
        remaining fields are kept in extra.
        """
        key = record.get('_id', record.get('id', record.get('key')))
        if key is None or str(key) == '':
            raise ValueError(f"User record has no id: {record}")

        name = record.get('name')
        if not name:
            name = ' '.join(p for p in (record.get('firstName'), record.get('lastName')) if p)

        known = {'_id', 'id', 'key', 'image', 'image_url', 'name'}
        extra = {k: v for k, v in record.items() if k not in known}
        return cls(
            key=str(key),
            image_url=record.get('image') or record.get('image_url') or None,
            name=name or '',
            extra=extra,
        )

    def to_dict(self) -> dict:
        data = dict(self.extra)
        data.update({'_id': self.key, 'name': self.name, 'image': self.image_url})
        return data


class GalleryProvider(ABC):
    """Source of enrolled identities."""

    @abstractmethod
    def list_identities(self, limit: Optional[int] = None) -> List[Identity]:
        """All identities in a stable order, optionally only the first `limit`."""

    def get_identities(self, keys: Iterable[str]) -> List[Identity]:
        """Identities whose key is in keys, in gallery order. Unknown keys are skipped."""
        wanted = {str(k) for k in keys}
        return [i for i in self.list_identities() if i.key in wanted]

    def get_identity(self, key: str) -> Optional[Identity]:
        found = self.get_identities([key])
        return found[0] if found else None


class StaticGalleryProvider(GalleryProvider):
    """In-memory gallery, mainly for tests and embedding callers."""

    def __init__(self, identities: Iterable[Identity] = ()):
        self._identities = list(identities)
        self._lock = threading.Lock()

    def list_identities(self, limit: Optional[int] = None) -> List[Identity]:
        with self._lock:
            identities = list(self._identities)
        return identities[:limit] if limit is not None else identities

    def replace(self, identities: Iterable[Identity]) -> None:
        with self._lock:
            self._identities = list(identities)


class JsonGalleryProvider(GalleryProvider):
    """
    Gallery backed by a JSON file of user records (a list, or {"users": [...]}).
    The file is re-read whenever its modification time changes.
    """

    def __init__(self, path: str):
        self.path = path
        self._identities: List[Identity] = []
        self._mtime: Optional[float] = None
        self._lock = threading.Lock()

    def list_identities(self, limit: Optional[int] = None) -> List[Identity]:
        with self._lock:
            self._reload_if_changed()
            identities = list(self._identities)
        return identities[:limit] if limit is not None else identities

    def _reload_if_changed(self) -> None:
        try:
            mtime = os.path.getmtime(self.path)
        except OSError:
            if self._mtime is not None:
                logger.warning(f"Gallery file disappeared: {self.path}")
            self._identities, self._mtime = [], None
            return

        if mtime == self._mtime:
            return

        with open(self.path, 'r', encoding='utf-8') as f:
            data = json.load(f)
        records = data.get('users', []) if isinstance(data, dict) else data

        identities = []
        for record in records:
            try:
                identities.append(Identity.from_record(record))
            except (ValueError, AttributeError) as e:
                logger.warning(f"Skipping gallery record: {e}")

        self._identities, self._mtime = identities, mtime
        logger.info(f"Loaded {len(identities)} identities from {self.path}")
