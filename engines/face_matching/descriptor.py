"""
Face descriptors — 128-d float32 vectors compared by Euclidean distance.
"""

import json

import numpy as np

from engines.face_matching.errors import InvalidDescriptor

DESCRIPTOR_SIZE = 128


def to_descriptor(value, size: int = DESCRIPTOR_SIZE) -> np.ndarray:
    """
    Normalize a descriptor into a read-only float32 numpy vector.

    Args:
        value: descriptor as list, JSON string, or numpy array
        size: expected number of components

    Raises:
        InvalidDescriptor: if the value cannot be converted or has the wrong shape
    """
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError as e:
            raise InvalidDescriptor(f"Descriptor is not valid JSON: {e}") from e

    if isinstance(value, (list, tuple)):
        descriptor = np.array(value, dtype=np.float32)
    elif isinstance(value, np.ndarray):
        descriptor = value.astype(np.float32)  # always a copy
    else:
        raise InvalidDescriptor(f"Unsupported descriptor type: {type(value)}")

    if descriptor.shape != (size,):
        raise InvalidDescriptor(f"Expected {size}-d descriptor, got shape {descriptor.shape}")
    if not np.all(np.isfinite(descriptor)):
        raise InvalidDescriptor("Descriptor contains non-finite values")

    descriptor.setflags(write=False)
    return descriptor


def euclidean_distance(a: np.ndarray, b: np.ndarray) -> float:
    """Euclidean distance between two descriptors. Lower is more similar."""
    return float(np.linalg.norm(a - b))
