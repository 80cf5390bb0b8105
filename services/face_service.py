"""
Face Recognition Service — patient identification on top of the MatchEngine.
Wires configuration into detectors, caches and the engine, and exposes the
operations the HTTP layer needs (recognize, test, preload, refresh, stats).
"""

import logging
import threading
from typing import Iterable, Optional

from config import Config
from engines.face_matching import (
    DescriptorCache, DescriptorExtractor, DlibFaceDetector, GalleryProvider, ImageBytesCache,
    ImageFetcher, JsonGalleryProvider, MatchEngine, MatchPolicy, MatchResult, PreloadReport,
    RefreshReport,
)

logger = logging.getLogger(__name__)

# (label, distance threshold) pairs reported by test_recognition
THRESHOLD_LEVELS = (
    ('veryStrict', 0.4),
    ('strict', 0.5),
    ('moderate', 0.6),
    ('lenient', 0.7),
)


def threshold_analysis(distance: float) -> dict:
    """Which of the reference thresholds a distance passes, plus a recommendation."""
    analysis = {
        label: {'threshold': threshold, 'match': distance < threshold}
        for label, threshold in THRESHOLD_LEVELS
    }
    if distance < 0.5:
        recommendation = 'High confidence match'
    elif distance < 0.6:
        recommendation = 'Moderate confidence match'
    elif distance < 0.7:
        recommendation = 'Low confidence match'
    else:
        recommendation = 'Not a match'
    return {'thresholdAnalysis': analysis, 'recommendation': recommendation}


def build_engine(config=Config, gallery_provider: Optional[GalleryProvider] = None) -> MatchEngine:
    """
    Construct the matching engine from configuration.
    Raises ModelUnavailable if the descriptor model cannot be loaded.
    """
    common = dict(
        upsample=config.FACE_UPSAMPLE,
        num_jitters=config.FACE_NUM_JITTERS,
        landmark_model=config.FACE_LANDMARK_MODEL,
    )
    fast = DlibFaceDetector(model=config.FACE_FAST_MODEL, **common)
    slow = DlibFaceDetector(model=config.FACE_SLOW_MODEL, **common) if config.FACE_SLOW_MODEL else None

    extractor = DescriptorExtractor(
        fast, slow,
        decode_timeout=config.IMAGE_DECODE_TIMEOUT,
        max_size=config.GALLERY_MAX_SIZE,
        descriptor_size=config.FACE_DESCRIPTOR_SIZE,
    )
    fetcher = ImageFetcher(
        cache=ImageBytesCache(max_items=config.IMAGE_CACHE_MAX_ITEMS),
        timeout=config.IMAGE_FETCH_TIMEOUT,
    )
    policy = MatchPolicy(
        high_threshold=config.MATCH_HIGH_THRESHOLD,
        medium_threshold=config.MATCH_MEDIUM_THRESHOLD,
        margin_threshold=config.MATCH_MARGIN_THRESHOLD,
        margin_ratio=config.MATCH_MARGIN_RATIO,
    )
    return MatchEngine(
        extractor, fetcher, DescriptorCache(),
        policy=policy,
        gallery_provider=gallery_provider,
        batch_size=config.MATCH_BATCH_SIZE,
        gallery_max_size=config.GALLERY_MAX_SIZE,
        probe_max_size=config.PROBE_MAX_SIZE,
        preload_batch_size=config.PRELOAD_BATCH_SIZE,
        preload_max_size=config.PRELOAD_MAX_SIZE,
        preload_sample_size=config.PRELOAD_SAMPLE_SIZE,
        preload_min_cache=config.PRELOAD_MIN_CACHE,
        descriptor_size=config.FACE_DESCRIPTOR_SIZE,
    )


class FaceService:
    """Patient identification service backed by a MatchEngine and a gallery."""

    def __init__(self, config=Config, gallery_provider: Optional[GalleryProvider] = None,
                 engine: Optional[MatchEngine] = None):
        """
        Args:
            config: object carrying the Config attributes
            gallery_provider: source of enrolled identities (default: JSON file)
            engine: prebuilt engine; built from config when omitted
        """
        self.config = config
        self.gallery = gallery_provider or JsonGalleryProvider(config.GALLERY_FILE)
        self.engine = engine or build_engine(config, self.gallery)
        if self.engine.gallery_provider is None:
            self.engine.gallery_provider = self.gallery
        self._startup_timer = None

    def recognize(self, photo: bytes) -> MatchResult:
        """
        Identify the person in a captured photo.

        Raises:
            NoFaceDetected / DecodeFailure / DecodeTimeout for an unusable probe photo
        """
        probe = self.engine.describe_probe(photo)
        logger.info("Face detected successfully in uploaded image")

        gallery = self.gallery.list_identities()
        self.engine.warm_up(gallery)
        logger.info(f"Comparing face with {len(gallery)} users")
        return self.engine.match(probe, gallery)

    def test_recognition(self, photo: bytes, user_id: str) -> Optional[dict]:
        """
        Distance between a photo and one user's portrait, for threshold tuning.
        Returns None when the user is unknown or has no portrait.
        """
        identity = self.gallery.get_identity(str(user_id))
        if identity is None or not identity.has_portrait:
            return None

        probe = self.engine.describe_probe(photo)
        distance = self.engine.compare(probe, identity)
        result = {'distance': distance}
        result.update(threshold_analysis(distance))
        return result

    def preload_all(self) -> PreloadReport:
        return self.engine.preload(self.gallery.list_identities())

    def schedule_startup_preload(self, delay: Optional[float] = None) -> threading.Timer:
        """Preload a sample of descriptors shortly after the server starts."""
        delay = self.config.PRELOAD_START_DELAY if delay is None else delay

        def run():
            try:
                sample = self.gallery.list_identities(limit=self.config.PRELOAD_SAMPLE_SIZE)
                report = self.engine.preload(sample)
                logger.info(f"Preloaded {report.computed} face descriptors on server start")
            except Exception:
                logger.exception("Error preloading initial face descriptors")

        self._startup_timer = threading.Timer(delay, run)
        self._startup_timer.daemon = True
        self._startup_timer.start()
        return self._startup_timer

    def refresh(self, user_ids: Iterable[str]) -> RefreshReport:
        return self.engine.refresh(user_ids)

    def clear_cache(self) -> int:
        return self.engine.clear_cache()

    def get_stats(self) -> dict:
        stats = self.engine.stats()
        stats['extractor'] = self.engine.extractor.get_stats()
        stats['fetcher'] = self.engine.fetcher.get_stats()
        return stats

    def shutdown(self) -> None:
        if self._startup_timer is not None:
            self._startup_timer.cancel()
        self.engine.shutdown()
