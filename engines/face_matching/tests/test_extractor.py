"""
Tests for DescriptorExtractor: decoding, downscaling and detector fallback.
"""

import time

import cv2
import numpy as np
import pytest
from unittest.mock import patch

from engines.face_matching.detector import BoundingBox, FaceDetector
from engines.face_matching.errors import (
    DecodeFailure, DecodeTimeout, InvalidDescriptor, NoFaceDetected,
)
from engines.face_matching.extractor import DescriptorExtractor, downscale


class FakeDetector(FaceDetector):
    """Returns fixed boxes; descriptor value encodes the box width."""

    def __init__(self, name, boxes=()):
        self.name = name
        self.boxes = list(boxes)
        self.locate_shapes = []
        self.described = []

    def locate(self, image):
        self.locate_shapes.append(image.shape)
        return list(self.boxes)

    def describe(self, image, bbox):
        self.described.append(bbox)
        descriptor = np.zeros(128, dtype=np.float32)
        descriptor[0] = bbox.width
        return descriptor


def _encode(height, width, color=(0, 0, 0)):
    frame = np.zeros((height, width, 3), dtype=np.uint8)
    frame[:] = color
    ok, buf = cv2.imencode('.png', frame)
    assert ok
    return buf.tobytes()


FACE = BoundingBox(left=10, top=10, right=60, bottom=60)


class TestDownscale:
    def test_landscape(self):
        image = np.zeros((960, 1280, 3), dtype=np.uint8)
        assert downscale(image, 640).shape == (480, 640, 3)

    def test_portrait(self):
        image = np.zeros((1200, 600, 3), dtype=np.uint8)
        assert downscale(image, 640).shape == (640, 320, 3)

    def test_within_bound_unchanged(self):
        image = np.zeros((400, 300, 3), dtype=np.uint8)
        assert downscale(image, 640) is image

    def test_no_bound(self):
        image = np.zeros((4000, 3000, 3), dtype=np.uint8)
        assert downscale(image, None) is image

    def test_floor_rounding(self):
        image = np.zeros((333, 1000, 3), dtype=np.uint8)
        # 333 * 0.48 = 159.84 → 159
        assert downscale(image, 480).shape == (159, 480, 3)


class TestDecode:
    def _extractor(self, **kwargs):
        return DescriptorExtractor(FakeDetector('fast', [FACE]), **kwargs)

    def test_decode_png_to_rgb(self):
        # pure blue in BGR → (0, 0, 255) in RGB
        image = self._extractor().decode(_encode(20, 30, color=(255, 0, 0)))
        assert image.shape == (20, 30, 3)
        assert tuple(image[0, 0]) == (0, 0, 255)

    def test_corrupt_bytes(self):
        with pytest.raises(DecodeFailure):
            self._extractor().decode(b'definitely not an image')

    def test_empty_bytes(self):
        with pytest.raises(DecodeFailure):
            self._extractor().decode(b'')

    def test_decode_timeout(self):
        def slow_decode(data):
            time.sleep(0.5)
            return np.zeros((10, 10, 3), dtype=np.uint8)

        extractor = self._extractor(decode_timeout=0.05)
        with patch.object(DescriptorExtractor, '_decode_rgb', side_effect=slow_decode):
            with pytest.raises(DecodeTimeout):
                extractor.decode(b'slow')

    def test_hung_decodes_do_not_starve_later_decodes(self):
        real_decode = DescriptorExtractor._decode_rgb

        def decode(data):
            if data == b'hang':
                time.sleep(2)
            return real_decode(data)

        extractor = self._extractor(decode_timeout=0.3)
        with patch.object(DescriptorExtractor, '_decode_rgb', side_effect=decode):
            for _ in range(3):
                with pytest.raises(DecodeTimeout):
                    extractor.decode(b'hang')
            image = extractor.decode(_encode(8, 8))
        assert image.shape == (8, 8, 3)


class TestExtract:
    def test_fast_detector_only_when_face_found(self):
        fast, slow = FakeDetector('fast', [FACE]), FakeDetector('slow', [FACE])
        extractor = DescriptorExtractor(fast, slow)
        descriptor = extractor.extract(_encode(100, 100))
        assert descriptor.shape == (128,)
        assert len(fast.locate_shapes) == 1
        assert slow.locate_shapes == []

    def test_falls_back_to_slow_detector(self):
        fast, slow = FakeDetector('fast', []), FakeDetector('slow', [FACE])
        extractor = DescriptorExtractor(fast, slow)
        descriptor = extractor.extract(_encode(100, 100))
        assert descriptor[0] == FACE.width
        assert len(fast.locate_shapes) == 1
        assert len(slow.locate_shapes) == 1

    def test_no_face_anywhere(self):
        extractor = DescriptorExtractor(FakeDetector('fast'), FakeDetector('slow'))
        with pytest.raises(NoFaceDetected):
            extractor.extract(_encode(100, 100))

    def test_no_slow_detector(self):
        extractor = DescriptorExtractor(FakeDetector('fast'), None)
        with pytest.raises(NoFaceDetected):
            extractor.extract(_encode(100, 100))

    def test_largest_face_used(self):
        small = BoundingBox(0, 0, 20, 20)
        big = BoundingBox(0, 0, 80, 80)
        fast = FakeDetector('fast', [small, big])
        descriptor = DescriptorExtractor(fast).extract(_encode(100, 100))
        assert fast.described == [big]
        assert descriptor[0] == 80

    def test_downscaled_before_detection(self):
        fast = FakeDetector('fast', [FACE])
        DescriptorExtractor(fast, max_size=640).extract(_encode(960, 1280))
        assert fast.locate_shapes == [(480, 640, 3)]

    def test_max_size_override(self):
        fast = FakeDetector('fast', [FACE])
        DescriptorExtractor(fast, max_size=640).extract(_encode(960, 1280), max_size=480)
        assert fast.locate_shapes == [(360, 480, 3)]

    def test_descriptor_is_read_only(self):
        descriptor = DescriptorExtractor(FakeDetector('fast', [FACE])).extract(_encode(50, 50))
        assert descriptor.flags.writeable is False

    def test_wrong_descriptor_size(self):
        class WideDetector(FakeDetector):
            def describe(self, image, bbox):
                return np.zeros(512, dtype=np.float32)

        extractor = DescriptorExtractor(WideDetector('fast', [FACE]))
        with pytest.raises(InvalidDescriptor):
            extractor.extract(_encode(50, 50))

    def test_describe_failure_falls_back(self):
        class BlindDetector(FakeDetector):
            def describe(self, image, bbox):
                return None

        slow = FakeDetector('slow', [FACE])
        extractor = DescriptorExtractor(BlindDetector('fast', [FACE]), slow)
        assert extractor.extract(_encode(50, 50))[0] == FACE.width

    def test_stats(self):
        stats = DescriptorExtractor(FakeDetector('fast'), FakeDetector('slow')).get_stats()
        assert stats['fast_detector'] == {'name': 'fast'}
        assert stats['slow_detector'] == {'name': 'slow'}
        assert stats['descriptor_size'] == 128
