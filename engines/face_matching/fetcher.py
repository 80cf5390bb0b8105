"""
Image Fetcher — downloads portrait images with a hard timeout.
Successful downloads are kept in a capped LRU byte cache keyed by URL so the
same portrait is not downloaded twice within the process lifetime.
"""

import logging
import threading
import time
from collections import OrderedDict
from typing import Optional

import requests

from engines.face_matching.deadline import DeadlineExceeded, call_with_deadline
from engines.face_matching.errors import FetchNetworkFailure, FetchTimeout, NotAnImage

logger = logging.getLogger(__name__)

CHUNK_SIZE = 8 * 1024


class ImageBytesCache:
    """
    URL → raw bytes, least-recently-used entries evicted past max_items.
    max_items of 0 or None disables the cap.
    """

    def __init__(self, max_items: Optional[int] = 1024):
        self.max_items = max_items
        self._items: 'OrderedDict[str, bytes]' = OrderedDict()
        self._lock = threading.Lock()

    def get(self, url: str) -> Optional[bytes]:
        with self._lock:
            data = self._items.get(url)
            if data is not None:
                self._items.move_to_end(url)
            return data

    def set(self, url: str, data: bytes) -> None:
        with self._lock:
            self._items[url] = data
            self._items.move_to_end(url)
            if self.max_items:
                while len(self._items) > self.max_items:
                    self._items.popitem(last=False)

    def delete(self, url: str) -> None:
        with self._lock:
            self._items.pop(url, None)

    def clear(self) -> int:
        with self._lock:
            removed = len(self._items)
            self._items.clear()
        return removed

    def size(self) -> int:
        with self._lock:
            return len(self._items)

    def __contains__(self, url: str) -> bool:
        with self._lock:
            return url in self._items


class ImageFetcher:
    """
    Retrieves raw image bytes for a URL.

    Responsibilities:
        - Serve repeated URLs from the ImageBytesCache without I/O
        - Enforce a wall-clock deadline over connect, headers and body
        - Reject responses whose Content-Type is not image/*

    Raises FetchTimeout, NotAnImage or FetchNetworkFailure.
    """

    def __init__(self, cache: Optional[ImageBytesCache] = None, timeout: float = 5.0,
                 session: Optional[requests.Session] = None):
        self.cache = cache if cache is not None else ImageBytesCache()
        self.timeout = timeout
        self.session = session or requests.Session()

    def fetch(self, url: str) -> bytes:
        cached = self.cache.get(url)
        if cached is not None:
            logger.debug(f"Using cached image for URL: {url[:50]}...")
            return cached

        t0 = time.monotonic()
        deadline = t0 + self.timeout
        abandoned = threading.Event()
        try:
            data = call_with_deadline(self._download, self.timeout, url, deadline, abandoned,
                                      name='image-fetch')
        except DeadlineExceeded as e:
            abandoned.set()
            raise FetchTimeout(url, self.timeout) from e
        except FetchNetworkFailure as e:
            # A server that trickles until the deadline and then drops the connection
            if time.monotonic() >= deadline:
                raise FetchTimeout(url, self.timeout) from e
            raise

        self.cache.set(url, data)
        logger.debug(f"Fetched {len(data)} bytes in {(time.monotonic() - t0) * 1000:.0f}ms: {url[:50]}")
        return data

    def _download(self, url: str, deadline: float, abandoned: threading.Event) -> bytes:
        try:
            with self.session.get(url, timeout=(self.timeout, self.timeout), stream=True) as response:
                response.raise_for_status()

                content_type = response.headers.get('Content-Type', '') or ''
                if not content_type.lower().startswith('image/'):
                    raise NotAnImage(url, content_type)

                chunks = []
                for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                    if abandoned.is_set() or time.monotonic() > deadline:
                        raise FetchTimeout(url, self.timeout)
                    if chunk:
                        chunks.append(chunk)
                return b''.join(chunks)

        except requests.exceptions.Timeout as e:
            raise FetchTimeout(url, self.timeout) from e
        except requests.exceptions.RequestException as e:
            raise FetchNetworkFailure(url, f"Error fetching image from URL {url}: {e}") from e

    def get_stats(self) -> dict:
        return {
            'images_cached': self.cache.size(),
            'max_items': self.cache.max_items,
            'timeout': self.timeout,
        }
