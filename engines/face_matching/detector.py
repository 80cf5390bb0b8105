"""
Face Detector — dlib (face_recognition) wrapper.
Locates faces in RGB images and computes 128-d descriptors for them.
Two variants share one interface: HOG (fast, lower accuracy) and
CNN (slow, higher accuracy).
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional

import numpy as np

from engines.face_matching.errors import ModelUnavailable

logger = logging.getLogger(__name__)

# Lazy import: dlib may not be installed in all environments.
# Absence is surfaced when a detector is constructed.
try:
    import face_recognition
    FACE_RECOGNITION_AVAILABLE = True
except ImportError:
    face_recognition = None
    FACE_RECOGNITION_AVAILABLE = False
    logger.warning("face_recognition not installed — descriptor extraction unavailable")


@dataclass
class BoundingBox:
    """Axis-aligned bounding box in pixel coordinates."""
    left: int
    top: int
    right: int
    bottom: int

    @property
    def width(self) -> int:
        return self.right - self.left

    @property
    def height(self) -> int:
        return self.bottom - self.top

    @property
    def area(self) -> int:
        return self.width * self.height

    def to_css(self) -> tuple:
        """(top, right, bottom, left), the order face_recognition uses."""
        return (self.top, self.right, self.bottom, self.left)

    @classmethod
    def from_css(cls, location) -> 'BoundingBox':
        top, right, bottom, left = location
        return cls(left=int(left), top=int(top), right=int(right), bottom=int(bottom))

    def to_dict(self) -> dict:
        return {'left': self.left, 'top': self.top, 'right': self.right, 'bottom': self.bottom}


class FaceDetector(ABC):
    """
    Interface for a face detector + descriptor model.

    Implementations must be safe to call from several worker threads.
    """

    name = 'detector'

    @abstractmethod
    def locate(self, image: np.ndarray) -> List[BoundingBox]:
        """Return bounding boxes of all faces in an RGB image."""

    @abstractmethod
    def describe(self, image: np.ndarray, bbox: BoundingBox) -> Optional[np.ndarray]:
        """Return the descriptor for the face inside bbox, or None if it cannot be computed."""

    def get_stats(self) -> dict:
        return {'name': self.name}


class DlibFaceDetector(FaceDetector):
    """
    face_recognition-backed detector.

    model='hog' is the fast CPU detector, model='cnn' the slower and more
    accurate MMOD CNN detector.
    """

    def __init__(self, model: str = 'hog', upsample: int = 1,
                 num_jitters: int = 1, landmark_model: str = 'large'):
        if not FACE_RECOGNITION_AVAILABLE:
            raise ModelUnavailable(
                "face_recognition is not installed — install with: pip install face_recognition"
            )
        if model not in ('hog', 'cnn'):
            raise ValueError(f"Unknown detection model: {model}")

        self.model = model
        self.name = f"dlib-{model}"
        self.upsample = upsample
        self.num_jitters = num_jitters
        self.landmark_model = landmark_model
        logger.info(f"FaceDetector: {self.name} ready (upsample={upsample}, landmarks={landmark_model})")

    def locate(self, image: np.ndarray) -> List[BoundingBox]:
        locations = face_recognition.face_locations(
            image, number_of_times_to_upsample=self.upsample, model=self.model
        )
        return [BoundingBox.from_css(loc) for loc in locations]

    def describe(self, image: np.ndarray, bbox: BoundingBox) -> Optional[np.ndarray]:
        encodings = face_recognition.face_encodings(
            image,
            known_face_locations=[bbox.to_css()],
            num_jitters=self.num_jitters,
            model=self.landmark_model,
        )
        if not encodings:
            return None
        return encodings[0]

    def get_stats(self) -> dict:
        return {
            'name': self.name,
            'model': self.model,
            'upsample': self.upsample,
            'num_jitters': self.num_jitters,
            'landmark_model': self.landmark_model,
        }
