"""
Face Matching Engine
Identifies a patient by matching a probe face descriptor against enrolled
portrait images, using dlib 128-d descriptors and Euclidean distance.

Usage:
    from engines.face_matching import (
        DescriptorCache, DescriptorExtractor, DlibFaceDetector,
        ImageFetcher, MatchEngine,
    )

    extractor = DescriptorExtractor(DlibFaceDetector('hog'), DlibFaceDetector('cnn'))
    engine    = MatchEngine(extractor, ImageFetcher(), DescriptorCache())
    identity  = engine.find_match(engine.describe_probe(photo_bytes), gallery)
"""

from engines.face_matching.cache import DescriptorCache
from engines.face_matching.descriptor import DESCRIPTOR_SIZE, euclidean_distance, to_descriptor
from engines.face_matching.detector import BoundingBox, DlibFaceDetector, FaceDetector
from engines.face_matching.engine import MatchEngine, MatchResult, PreloadReport, RefreshReport
from engines.face_matching.errors import (
    DecodeFailure, DecodeTimeout, ExtractionError, FaceMatchError, FetchNetworkFailure,
    FetchTimeout, ImageFetchError, InvalidDescriptor, ModelUnavailable, NoFaceDetected,
    NotAnImage,
)
from engines.face_matching.extractor import DescriptorExtractor
from engines.face_matching.fetcher import ImageBytesCache, ImageFetcher
from engines.face_matching.gallery import (
    GalleryProvider, Identity, JsonGalleryProvider, StaticGalleryProvider,
)
from engines.face_matching.policy import MatchCandidate, MatchPolicy

__all__ = [
    'DescriptorCache', 'DESCRIPTOR_SIZE', 'euclidean_distance', 'to_descriptor',
    'BoundingBox', 'DlibFaceDetector', 'FaceDetector',
    'MatchEngine', 'MatchResult', 'PreloadReport', 'RefreshReport',
    'FaceMatchError', 'ImageFetchError', 'FetchTimeout', 'FetchNetworkFailure', 'NotAnImage',
    'ExtractionError', 'DecodeFailure', 'DecodeTimeout', 'NoFaceDetected',
    'ModelUnavailable', 'InvalidDescriptor',
    'DescriptorExtractor',
    'ImageBytesCache', 'ImageFetcher',
    'GalleryProvider', 'Identity', 'JsonGalleryProvider', 'StaticGalleryProvider',
    'MatchCandidate', 'MatchPolicy',
]
