"""
Tests for DescriptorCache and descriptor helpers.
"""

import json
import threading

import numpy as np
import pytest

from engines.face_matching.cache import DescriptorCache
from engines.face_matching.descriptor import euclidean_distance, to_descriptor
from engines.face_matching.errors import InvalidDescriptor


def _random_descriptor():
    return to_descriptor(np.random.randn(128).astype(np.float32))


class TestToDescriptor:
    def test_from_list(self):
        d = to_descriptor([0.1] * 128)
        assert d.shape == (128,)
        assert d.dtype == np.float32

    def test_from_json_string(self):
        d = to_descriptor(json.dumps([0.5] * 128))
        assert d[0] == pytest.approx(0.5)

    def test_read_only(self):
        d = to_descriptor(np.zeros(128))
        with pytest.raises(ValueError):
            d[0] = 1.0

    def test_copies_input(self):
        raw = np.zeros(128, dtype=np.float32)
        d = to_descriptor(raw)
        raw[0] = 9.0
        assert d[0] == 0.0

    def test_wrong_length(self):
        with pytest.raises(InvalidDescriptor, match='128-d'):
            to_descriptor(np.zeros(512))

    def test_invalid_descriptor_is_value_error(self):
        with pytest.raises(ValueError):
            to_descriptor([1.0, 2.0])

    def test_unsupported_type(self):
        with pytest.raises(InvalidDescriptor):
            to_descriptor(42)

    def test_non_finite(self):
        values = [0.0] * 128
        values[3] = float('nan')
        with pytest.raises(InvalidDescriptor):
            to_descriptor(values)


class TestDistance:
    def test_euclidean(self):
        a = np.zeros(128, dtype=np.float32)
        b = np.zeros(128, dtype=np.float32)
        b[0], b[1] = 3.0, 4.0
        assert euclidean_distance(a, b) == pytest.approx(5.0)

    def test_identical_is_zero(self):
        d = _random_descriptor()
        assert euclidean_distance(d, d) == 0.0


class TestDescriptorCache:
    def test_get_missing(self):
        assert DescriptorCache().get('nobody') is None

    def test_set_and_get(self):
        cache = DescriptorCache()
        d = _random_descriptor()
        cache.set('u1', d)
        assert cache.get('u1') is d
        assert 'u1' in cache
        assert cache.size() == 1

    def test_overwrite_not_merge(self):
        cache = DescriptorCache()
        first, second = _random_descriptor(), _random_descriptor()
        cache.set('u1', first)
        cache.set('u1', second)
        assert cache.size() == 1
        assert cache.get('u1') is second

    def test_delete(self):
        cache = DescriptorCache()
        cache.set('u1', _random_descriptor())
        cache.delete('u1')
        assert cache.get('u1') is None
        assert len(cache) == 0

    def test_delete_absent_is_noop(self):
        cache = DescriptorCache()
        cache.delete('missing')
        assert cache.size() == 0

    def test_clear_returns_count(self):
        cache = DescriptorCache()
        for i in range(5):
            cache.set(f'u{i}', _random_descriptor())
        assert cache.clear() == 5
        assert cache.size() == 0
        assert cache.clear() == 0

    def test_instances_are_isolated(self):
        a, b = DescriptorCache(), DescriptorCache()
        a.set('u1', _random_descriptor())
        assert b.size() == 0

    def test_concurrent_writers(self):
        cache = DescriptorCache()
        descriptor = _random_descriptor()

        def writer(offset):
            for i in range(200):
                cache.set(f'u{(i + offset) % 50}', descriptor)

        threads = [threading.Thread(target=writer, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert cache.size() == 50
        assert sorted(cache.keys()) == sorted(f'u{i}' for i in range(50))
