"""
Tests for FaceService wiring and helpers.
"""

import numpy as np
import pytest
from unittest.mock import MagicMock, patch

from config import Config
from engines.face_matching import (
    Identity, MatchEngine, MatchResult, ModelUnavailable, PreloadReport, StaticGalleryProvider,
)
from services.face_service import FaceService, build_engine, threshold_analysis


class TestConfig(Config):
    __test__ = False
    FACE_SLOW_MODEL = ''
    MATCH_BATCH_SIZE = 3
    MATCH_HIGH_THRESHOLD = 0.4
    PRELOAD_SAMPLE_SIZE = 2
    PRELOAD_START_DELAY = 0


def _gallery():
    return StaticGalleryProvider([
        Identity('u1', 'http://img/u1.jpg', 'Asha Rao'),
        Identity('u2', 'http://img/u2.jpg', 'Ravi Kumar'),
        Identity('u3', None, 'No Photo'),
    ])


def _service(engine=None):
    engine = engine or MagicMock()
    engine.gallery_provider = None
    return FaceService(TestConfig, gallery_provider=_gallery(), engine=engine), engine


class TestThresholdAnalysis:
    @pytest.mark.parametrize('distance, recommendation', [
        (0.35, 'High confidence match'),
        (0.55, 'Moderate confidence match'),
        (0.65, 'Low confidence match'),
        (0.80, 'Not a match'),
    ])
    def test_recommendation(self, distance, recommendation):
        assert threshold_analysis(distance)['recommendation'] == recommendation

    def test_levels(self):
        analysis = threshold_analysis(0.45)['thresholdAnalysis']
        assert analysis['veryStrict'] == {'threshold': 0.4, 'match': False}
        assert analysis['strict'] == {'threshold': 0.5, 'match': True}
        assert analysis['lenient']['match'] is True


class TestBuildEngine:
    def test_config_flows_into_engine(self):
        with patch('services.face_service.DlibFaceDetector') as detector_cls:
            engine = build_engine(TestConfig)

        assert isinstance(engine, MatchEngine)
        assert engine.batch_size == 3
        assert engine.policy.high_threshold == 0.4
        assert engine.policy.medium_threshold == 0.55
        assert engine.extractor.slow_detector is None
        detector_cls.assert_called_once_with(model='hog', upsample=1, num_jitters=1, landmark_model='large')
        engine.shutdown()

    def test_slow_detector_built_when_configured(self):
        class WithFallback(TestConfig):
            FACE_SLOW_MODEL = 'cnn'

        with patch('services.face_service.DlibFaceDetector') as detector_cls:
            engine = build_engine(WithFallback)
        models = [c.kwargs['model'] for c in detector_cls.call_args_list]
        assert models == ['hog', 'cnn']
        engine.shutdown()

    def test_model_unavailable_is_fatal(self):
        with patch('engines.face_matching.detector.FACE_RECOGNITION_AVAILABLE', False):
            with pytest.raises(ModelUnavailable):
                build_engine(TestConfig)


class TestFaceService:
    def test_gallery_provider_attached_to_engine(self):
        service, engine = _service()
        assert engine.gallery_provider is service.gallery

    def test_recognize_flow(self):
        service, engine = _service()
        probe = np.zeros(128, dtype=np.float32)
        engine.describe_probe.return_value = probe
        engine.match.return_value = MatchResult(identity=Identity('u1'))

        result = service.recognize(b'photo')

        assert result.identity.key == 'u1'
        engine.describe_probe.assert_called_once_with(b'photo')
        gallery = engine.warm_up.call_args[0][0]
        assert [i.key for i in gallery] == ['u1', 'u2', 'u3']
        engine.match.assert_called_once_with(probe, gallery)

    def test_test_recognition(self):
        service, engine = _service()
        engine.compare.return_value = 0.42
        result = service.test_recognition(b'photo', 'u2')
        assert result['distance'] == 0.42
        assert result['recommendation'] == 'High confidence match'
        assert engine.compare.call_args[0][1].key == 'u2'

    def test_test_recognition_unknown_or_no_portrait(self):
        service, engine = _service()
        assert service.test_recognition(b'photo', 'nobody') is None
        assert service.test_recognition(b'photo', 'u3') is None
        engine.describe_probe.assert_not_called()

    def test_preload_all(self):
        service, engine = _service()
        engine.preload.return_value = PreloadReport(total=3)
        assert service.preload_all().total == 3
        assert len(engine.preload.call_args[0][0]) == 3

    def test_startup_preload_uses_sample(self):
        service, engine = _service()
        engine.preload.return_value = PreloadReport(total=2, computed=2)
        timer = service.schedule_startup_preload()
        timer.join(timeout=5)
        sample = engine.preload.call_args[0][0]
        assert [i.key for i in sample] == ['u1', 'u2']

    def test_startup_preload_failure_is_logged_not_raised(self):
        service, engine = _service()
        engine.preload.side_effect = RuntimeError('boom')
        timer = service.schedule_startup_preload()
        timer.join(timeout=5)
        assert engine.preload.called

    def test_stats_include_extractor_and_fetcher(self):
        service, engine = _service()
        engine.stats.return_value = {'descriptor_cache_size': 0, 'image_cache_size': 0}
        engine.extractor.get_stats.return_value = {'max_size': 640}
        engine.fetcher.get_stats.return_value = {'images_cached': 3, 'timeout': 5.0}
        stats = service.get_stats()
        assert stats['extractor'] == {'max_size': 640}
        assert stats['fetcher']['images_cached'] == 3
