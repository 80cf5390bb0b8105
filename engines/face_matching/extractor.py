"""
Descriptor Extractor — image bytes → one 128-d face descriptor.

Decodes with OpenCV under a timeout guard, downscales large images to a
bounded dimension, then runs the fast detector and falls back to the slow
detector only when the fast one finds no face.
"""

import logging
import time
from typing import Optional

import cv2
import numpy as np

from engines.face_matching.deadline import DeadlineExceeded, call_with_deadline
from engines.face_matching.descriptor import DESCRIPTOR_SIZE, to_descriptor
from engines.face_matching.detector import FaceDetector
from engines.face_matching.errors import DecodeFailure, DecodeTimeout, NoFaceDetected

logger = logging.getLogger(__name__)


def downscale(image: np.ndarray, max_size: Optional[int]) -> np.ndarray:
    """
    Shrink an image so its larger side is at most max_size, keeping aspect ratio.
    Images already within the bound are returned unchanged.
    """
    if not max_size:
        return image

    height, width = image.shape[:2]
    if width <= max_size and height <= max_size:
        return image

    if width > height:
        new_width, new_height = max_size, int(height * (max_size / width))
    else:
        new_width, new_height = int(width * (max_size / height)), max_size

    logger.debug(f"Resizing image from {width}x{height} to {new_width}x{new_height}")
    return cv2.resize(image, (max(new_width, 1), max(new_height, 1)), interpolation=cv2.INTER_AREA)


class DescriptorExtractor:
    """
    Computes a single face descriptor per image.

    Responsibilities:
        - Decode image bytes (DecodeFailure / DecodeTimeout)
        - Bound pixel count before detection
        - Fast → slow detector fallback
        - Pick the largest face when several are found

    Does NOT cache anything — see DescriptorCache and MatchEngine.
    """

    def __init__(self, fast_detector: FaceDetector, slow_detector: Optional[FaceDetector] = None,
                 decode_timeout: float = 10.0, max_size: Optional[int] = 640,
                 descriptor_size: int = DESCRIPTOR_SIZE):
        self.fast_detector = fast_detector
        self.slow_detector = slow_detector
        self.decode_timeout = decode_timeout
        self.max_size = max_size
        self.descriptor_size = descriptor_size

    def decode(self, data: bytes) -> np.ndarray:
        """Decode image bytes into an RGB pixel array."""
        if not data:
            raise DecodeFailure("Image buffer is empty")

        try:
            image = call_with_deadline(self._decode_rgb, self.decode_timeout, data, name='image-decode')
        except DeadlineExceeded as e:
            raise DecodeTimeout(self.decode_timeout) from e
        except cv2.error as e:
            raise DecodeFailure(f"Image load failed: {e}") from e

        if image is None:
            raise DecodeFailure("Image load failed: unsupported or corrupt image data")
        return image

    @staticmethod
    def _decode_rgb(data: bytes) -> Optional[np.ndarray]:
        buffer = np.frombuffer(data, np.uint8)
        frame = cv2.imdecode(buffer, cv2.IMREAD_COLOR)
        if frame is None:
            return None
        # dlib expects RGB; OpenCV decodes to BGR
        return cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)

    def extract(self, data: bytes, max_size: Optional[int] = None) -> np.ndarray:
        """
        Compute the face descriptor of an encoded image.

        Args:
            data: raw image bytes (JPEG, PNG, ...)
            max_size: bound on the larger image side; defaults to self.max_size

        Returns:
            read-only float32 descriptor

        Raises:
            DecodeFailure, DecodeTimeout, NoFaceDetected
        """
        image = self.decode(data)
        return self.extract_from_image(image, max_size=max_size)

    def extract_from_image(self, image: np.ndarray, max_size: Optional[int] = None) -> np.ndarray:
        """Compute the face descriptor of an already decoded RGB image."""
        image = downscale(image, max_size if max_size is not None else self.max_size)
        image = np.ascontiguousarray(image)

        for detector in (self.fast_detector, self.slow_detector):
            if detector is None:
                continue
            t0 = time.monotonic()
            descriptor = self._detect_with(detector, image)
            logger.debug(f"{detector.name}: {'face' if descriptor is not None else 'no face'} "
                         f"in {(time.monotonic() - t0) * 1000:.0f}ms")
            if descriptor is not None:
                return descriptor
            if detector is self.fast_detector and self.slow_detector is not None:
                logger.debug(f"No face detected with {detector.name}, trying {self.slow_detector.name}")

        raise NoFaceDetected()

    def _detect_with(self, detector: FaceDetector, image: np.ndarray) -> Optional[np.ndarray]:
        boxes = detector.locate(image)
        if not boxes:
            return None

        # Use the largest face (most prominent)
        largest = max(boxes, key=lambda b: b.area)
        raw = detector.describe(image, largest)
        if raw is None:
            return None
        return to_descriptor(np.asarray(raw), size=self.descriptor_size)

    def get_stats(self) -> dict:
        return {
            'fast_detector': self.fast_detector.get_stats() if self.fast_detector else None,
            'slow_detector': self.slow_detector.get_stats() if self.slow_detector else None,
            'decode_timeout': self.decode_timeout,
            'max_size': self.max_size,
            'descriptor_size': self.descriptor_size,
        }
