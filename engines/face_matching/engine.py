"""
Match Engine — probe descriptor vs. gallery of enrolled portraits.

Algorithm:
    1. Cache pass: score every identity whose descriptor is already cached (no I/O)
    2. Fresh pass: the rest, in fixed-size batches; each batch runs concurrently
       (fetch → extract → cache write → distance), batches run one after another
    3. Rank all candidates by distance and hand the ranking to the MatchPolicy

The whole gallery is always evaluated before a winner is chosen, so the result
does not depend on gallery order or on task completion order.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence, Tuple

import numpy as np

from engines.face_matching.cache import DescriptorCache
from engines.face_matching.descriptor import DESCRIPTOR_SIZE, euclidean_distance, to_descriptor
from engines.face_matching.errors import FaceMatchError
from engines.face_matching.extractor import DescriptorExtractor
from engines.face_matching.fetcher import ImageFetcher
from engines.face_matching.gallery import GalleryProvider, Identity
from engines.face_matching.policy import (
    SOURCE_CACHE, SOURCE_FRESH, MatchCandidate, MatchPolicy,
)

logger = logging.getLogger(__name__)


@dataclass
class MatchResult:
    """Outcome of one match attempt, with the ranking that produced it."""
    identity: Optional[Identity] = None
    distance: Optional[float] = None
    confidence: Optional[str] = None
    candidates: List[MatchCandidate] = field(default_factory=list)
    evaluated: int = 0   # gallery identities with a portrait
    failures: int = 0    # identities whose descriptor could not be computed

    @property
    def matched(self) -> bool:
        return self.identity is not None

    def to_dict(self, top_k: int = 5) -> dict:
        return {
            'matched': self.matched,
            'key': self.identity.key if self.identity else None,
            'distance': round(self.distance, 4) if self.distance is not None else None,
            'confidence': self.confidence,
            'evaluated': self.evaluated,
            'failures': self.failures,
            'candidates': [c.to_dict() for c in self.candidates[:top_k]],
        }


@dataclass
class PreloadReport:
    total: int = 0
    loaded: int = 0     # portraits fetched or already described
    computed: int = 0   # descriptors present in the cache after the run
    errors: int = 0
    cache_size: int = 0

    def to_dict(self) -> dict:
        return {
            'totalUsers': self.total,
            'loadedCount': self.loaded,
            'descriptorsComputed': self.computed,
            'errorCount': self.errors,
            'cacheSize': self.cache_size,
        }


@dataclass
class RefreshReport:
    refreshed: int = 0
    errors: int = 0
    total_requested: int = 0

    def to_dict(self) -> dict:
        return {
            'refreshedCount': self.refreshed,
            'errorCount': self.errors,
            'totalRequested': self.total_requested,
        }


class MatchEngine:
    """
    Orchestrates probe-vs-gallery comparison over a shared DescriptorCache.

    Responsibilities:
        - Cache-first scoring, batched fresh descriptor computation
        - Per-identity failure isolation (logged, never raised)
        - Collect-then-rank and confidence policy
        - Preload / refresh / stats for the administrative surface

    The cache, fetcher and extractor are injected; the engine never owns them
    beyond a single lookup or update.
    """

    def __init__(self, extractor: DescriptorExtractor, fetcher: ImageFetcher,
                 cache: DescriptorCache, policy: Optional[MatchPolicy] = None,
                 gallery_provider: Optional[GalleryProvider] = None,
                 batch_size: int = 5, gallery_max_size: int = 640, probe_max_size: int = 640,
                 preload_batch_size: int = 10, preload_max_size: int = 480,
                 preload_sample_size: int = 20, preload_min_cache: int = 5,
                 descriptor_size: int = DESCRIPTOR_SIZE):
        if batch_size < 1 or preload_batch_size < 1:
            raise ValueError("Batch sizes must be at least 1")

        self.extractor = extractor
        self.fetcher = fetcher
        self.cache = cache
        self.policy = policy or MatchPolicy()
        self.gallery_provider = gallery_provider
        self.batch_size = batch_size
        self.gallery_max_size = gallery_max_size
        self.probe_max_size = probe_max_size
        self.preload_batch_size = preload_batch_size
        self.preload_max_size = preload_max_size
        self.preload_sample_size = preload_sample_size
        self.preload_min_cache = preload_min_cache
        self.descriptor_size = descriptor_size

        self._pool = ThreadPoolExecutor(max_workers=max(batch_size, preload_batch_size),
                                        thread_name_prefix='face-match')
        self._preload_lock = threading.Lock()

    # ── Matching ──

    def describe_probe(self, data: bytes) -> np.ndarray:
        """
        Extract the probe descriptor from a captured photo.
        Raises ExtractionError subclasses (e.g. NoFaceDetected) to the caller.
        """
        return self.extractor.extract(data, max_size=self.probe_max_size)

    def find_match(self, probe, gallery: Sequence[Identity]) -> Optional[Identity]:
        """Best-matching identity for the probe, or None."""
        return self.match(probe, gallery).identity

    def match(self, probe, gallery: Sequence[Identity]) -> MatchResult:
        """
        Score the probe against every gallery identity and apply the policy.

        Args:
            probe: 128-d descriptor (list, JSON string or numpy array)
            gallery: identities to compare against, in caller order

        Returns:
            MatchResult; identity is None when nothing is confident enough.

        Raises:
            InvalidDescriptor: malformed probe
        """
        probe = to_descriptor(probe, size=self.descriptor_size)
        eligible = self._eligible(gallery)
        result = MatchResult(evaluated=len(eligible))
        if not eligible:
            logger.info("Gallery is empty — no match")
            return result

        t0 = time.monotonic()
        candidates: List[MatchCandidate] = []
        missing: List[Tuple[int, Identity]] = []

        # First pass: cached descriptors only
        for position, identity in eligible:
            cached = self.cache.get(identity.key)
            if cached is None:
                missing.append((position, identity))
                continue
            distance = euclidean_distance(probe, cached)
            candidates.append(MatchCandidate(identity, distance, SOURCE_CACHE, position))
            logger.debug(f"Cache match for {identity.key} ({identity.name}): distance = {distance:.4f}")

        # Second pass: compute what the cache lacks, batch by batch
        batches = [missing[i:i + self.batch_size] for i in range(0, len(missing), self.batch_size)]
        if batches:
            logger.info(f"{len(missing)} identities need descriptor calculation "
                        f"({len(batches)} batches of {self.batch_size})")

        for index, batch in enumerate(batches, 1):
            logger.debug(f"Processing batch {index}/{len(batches)}")
            futures = [
                self._pool.submit(self._compute_descriptor, identity, self.gallery_max_size)
                for _, identity in batch
            ]
            for (position, identity), future in zip(batch, futures):
                descriptor = self._collect(identity, future)
                if descriptor is None:
                    result.failures += 1
                    continue
                distance = euclidean_distance(probe, descriptor)
                candidates.append(MatchCandidate(identity, distance, SOURCE_FRESH, position))
                logger.debug(f"Fresh match for {identity.key} ({identity.name}): distance = {distance:.4f}")

        candidates.sort(key=lambda c: (c.distance, c.position))
        result.candidates = candidates

        for rank, c in enumerate(candidates[:5], 1):
            logger.debug(f"{rank}. {c.identity.name or c.identity.key}, distance: {c.distance:.4f}, source: {c.source}")

        decision = self.policy.decide(candidates)
        elapsed = (time.monotonic() - t0) * 1000
        if decision is None:
            logger.info(f"No match within acceptable threshold "
                        f"({len(candidates)} candidates, {result.failures} failures, {elapsed:.0f}ms)")
            return result

        winner = decision.candidate
        result.identity = winner.identity
        result.distance = winner.distance
        result.confidence = decision.confidence
        logger.info(f"{decision.confidence.capitalize()} confidence match: {winner.identity.key} "
                    f"({winner.identity.name}) distance {winner.distance:.4f} in {elapsed:.0f}ms")
        return result

    def compare(self, probe, identity: Identity) -> float:
        """
        Distance between the probe and a single identity's portrait.
        Unlike match(), failures are raised to the caller.
        """
        probe = to_descriptor(probe, size=self.descriptor_size)
        descriptor = self.cache.get(identity.key)
        if descriptor is None:
            if not identity.has_portrait:
                raise ValueError(f"Identity {identity.key} has no portrait image")
            descriptor = self._compute_descriptor(identity, self.gallery_max_size)
        return euclidean_distance(probe, descriptor)

    # ── Preload / refresh ──

    def warm_up(self, gallery: Sequence[Identity]) -> bool:
        """
        Schedule a background preload when the cache is nearly empty.
        Returns True if a preload was scheduled.
        """
        if self.cache.size() >= self.preload_min_cache:
            return False
        logger.info(f"Descriptor cache has {self.cache.size()} entries, preloading in background")
        self.preload(gallery, sample_size=self.preload_sample_size, background=True)
        return True

    def preload(self, identities: Iterable[Identity], sample_size: Optional[int] = None,
                background: bool = False) -> Optional[PreloadReport]:
        """
        Compute and cache descriptors for identities that lack one.

        Args:
            identities: identities to preload
            sample_size: only consider the first N identities
            background: run on a daemon thread and return None immediately

        Never raises; failures are counted in the report.
        """
        identities = list(identities)
        if sample_size is not None:
            identities = identities[:sample_size]

        if background:
            thread = threading.Thread(target=self._preload_in_background, args=(identities,),
                                      name='descriptor-preload', daemon=True)
            thread.start()
            return None

        with self._preload_lock:
            return self._preload(identities)

    def _preload_in_background(self, identities: List[Identity]) -> None:
        if not self._preload_lock.acquire(blocking=False):
            logger.debug("Preload already running, skipping")
            return
        try:
            report = self._preload(identities)
            logger.info(f"Precomputed descriptors in background: {report.to_dict()}")
        except Exception:
            logger.exception("Error in background descriptor precomputation")
        finally:
            self._preload_lock.release()

    def _preload(self, identities: List[Identity]) -> PreloadReport:
        report = PreloadReport(total=len(identities))
        with_portrait = [i for i in identities if i.has_portrait]
        batches = [with_portrait[i:i + self.preload_batch_size]
                   for i in range(0, len(with_portrait), self.preload_batch_size)]
        logger.info(f"Preloading {len(with_portrait)} identities in {len(batches)} batches")

        for batch in batches:
            todo = []
            for identity in batch:
                if identity.key in self.cache:
                    report.loaded += 1
                    report.computed += 1
                else:
                    todo.append(identity)

            futures = [self._pool.submit(self._preload_one, identity) for identity in todo]
            for identity, future in zip(todo, futures):
                try:
                    fetched, described = future.result()
                except Exception as e:
                    logger.warning(f"Error processing image for {identity.key}: {e}")
                    report.errors += 1
                    continue
                report.loaded += int(fetched)
                report.computed += int(described)

        report.cache_size = self.cache.size()
        return report

    def _preload_one(self, identity: Identity) -> Tuple[bool, bool]:
        data = self.fetcher.fetch(identity.image_url)
        try:
            descriptor = self.extractor.extract(data, max_size=self.preload_max_size)
        except FaceMatchError as e:
            logger.info(f"No descriptor for {identity.key} ({identity.name}): {e}")
            return True, False
        self.cache.set(identity.key, descriptor)
        logger.debug(f"Computed and cached descriptor for {identity.key} ({identity.name})")
        return True, True

    def refresh(self, identity_keys: Iterable[str]) -> RefreshReport:
        """
        Drop and recompute descriptors for the given keys (portrait changed).
        Keys are resolved through the gallery provider; unknown keys are skipped.
        """
        if self.gallery_provider is None:
            raise RuntimeError("MatchEngine has no gallery provider to resolve identity keys")
        keys = [str(k) for k in identity_keys]
        identities = self.gallery_provider.get_identities(keys)
        report = self.refresh_identities(identities)
        report.total_requested = len(keys)
        return report

    def refresh_identities(self, identities: Iterable[Identity]) -> RefreshReport:
        identities = [i for i in identities if i.has_portrait]
        report = RefreshReport(total_requested=len(identities))

        for start in range(0, len(identities), self.preload_batch_size):
            batch = identities[start:start + self.preload_batch_size]
            for identity in batch:
                self.cache.delete(identity.key)
                self.fetcher.cache.delete(identity.image_url)

            futures = [
                self._pool.submit(self._compute_descriptor, identity, self.preload_max_size)
                for identity in batch
            ]
            for identity, future in zip(batch, futures):
                if self._collect(identity, future) is None:
                    report.errors += 1
                else:
                    report.refreshed += 1

        logger.info(f"Refreshed {report.refreshed} descriptors ({report.errors} errors)")
        return report

    # ── Cache administration ──

    def clear_cache(self) -> int:
        return self.cache.clear()

    def stats(self) -> dict:
        return {
            'descriptor_cache_size': self.cache.size(),
            'image_cache_size': self.fetcher.cache.size(),
            'batch_size': self.batch_size,
            'descriptor_size': self.descriptor_size,
            'policy': self.policy.to_dict(),
        }

    def shutdown(self) -> None:
        self._pool.shutdown(wait=True)

    # ── Internals ──

    @staticmethod
    def _eligible(gallery: Sequence[Identity]) -> List[Tuple[int, Identity]]:
        """Identities with a portrait, first occurrence of each key, with gallery position."""
        seen = set()
        eligible = []
        for position, identity in enumerate(gallery):
            if not identity.has_portrait or identity.key in seen:
                continue
            seen.add(identity.key)
            eligible.append((position, identity))
        return eligible

    def _compute_descriptor(self, identity: Identity, max_size: int) -> np.ndarray:
        """fetch → extract → cache write. Runs on a worker thread."""
        t0 = time.monotonic()
        data = self.fetcher.fetch(identity.image_url)
        descriptor = self.extractor.extract(data, max_size=max_size)
        self.cache.set(identity.key, descriptor)
        logger.debug(f"Processed {identity.key} in {(time.monotonic() - t0) * 1000:.0f}ms")
        return descriptor

    @staticmethod
    def _collect(identity: Identity, future) -> Optional[np.ndarray]:
        """Wait for one identity's task; failures are logged and yield None."""
        try:
            return future.result()
        except FaceMatchError as e:
            logger.warning(f"Skipping {identity.key} ({identity.name}): {e}")
        except Exception:
            logger.exception(f"Error processing image for {identity.key}")
        return None
