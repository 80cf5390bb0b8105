"""
Face Matching Errors — exception taxonomy for the matching engine.

Per-identity failures (fetch and extraction errors) are absorbed by the
MatchEngine batch loop. ModelUnavailable and InvalidDescriptor propagate.
"""


class FaceMatchError(Exception):
    """Base class for all face matching errors."""


# ── Image retrieval ──

class ImageFetchError(FaceMatchError):
    """Portrait image could not be retrieved."""

    def __init__(self, url: str, message: str = ''):
        self.url = url
        super().__init__(message or f"Error fetching image from URL: {url}")


class FetchTimeout(ImageFetchError):
    def __init__(self, url: str, timeout: float):
        self.timeout = timeout
        super().__init__(url, f"Image fetch timed out after {timeout}s: {url}")


class FetchNetworkFailure(ImageFetchError):
    pass


class NotAnImage(ImageFetchError):
    def __init__(self, url: str, content_type: str):
        self.content_type = content_type
        super().__init__(url, f"The fetched URL is not an image ({content_type or 'no content type'}): {url}")


# ── Descriptor extraction ──

class ExtractionError(FaceMatchError):
    """Descriptor could not be computed from an image."""


class DecodeFailure(ExtractionError):
    pass


class DecodeTimeout(ExtractionError):
    def __init__(self, timeout: float):
        self.timeout = timeout
        super().__init__(f"Image decoding timed out after {timeout}s")


class NoFaceDetected(ExtractionError):
    def __init__(self, message: str = 'No face detected in image'):
        super().__init__(message)


# ── Fatal ──

class ModelUnavailable(FaceMatchError):
    """Descriptor model failed to load. Raised at startup, never per request."""


class InvalidDescriptor(FaceMatchError, ValueError):
    """Descriptor has the wrong shape or type."""
