"""
Configuration Management for the ArogyaNetra face match service
Loads environment variables and provides configuration settings
"""

import os
from dotenv import load_dotenv

# Load environment variables
load_dotenv()


def _env_bool(name, default):
    return os.getenv(name, str(default)).strip().lower() in ('1', 'true', 'yes', 'on')


class Config:
    """Application configuration"""

    # Flask
    SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-key-change-in-production')
    FLASK_ENV = os.getenv('FLASK_ENV', 'development')
    MAX_CONTENT_LENGTH = int(os.getenv('MAX_UPLOAD_MB', 10)) * 1024 * 1024

    # Server
    HOST = os.getenv('HOST', '0.0.0.0')
    PORT = int(os.getenv('PORT', 4000))
    CORS_ORIGINS = os.getenv('CORS_ORIGINS', '*')

    # Logging
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
    LOG_FILE = os.getenv('LOG_FILE', 'logs/app.log')

    # Gallery (user records exported by the main application)
    GALLERY_FILE = os.getenv('GALLERY_FILE', 'data/users.json')

    # Face descriptor model
    FACE_DESCRIPTOR_SIZE = int(os.getenv('FACE_DESCRIPTOR_SIZE', 128))
    FACE_FAST_MODEL = os.getenv('FACE_FAST_MODEL', 'hog')
    FACE_SLOW_MODEL = os.getenv('FACE_SLOW_MODEL', 'cnn')   # empty disables the fallback
    FACE_UPSAMPLE = int(os.getenv('FACE_UPSAMPLE', 1))
    FACE_NUM_JITTERS = int(os.getenv('FACE_NUM_JITTERS', 1))
    FACE_LANDMARK_MODEL = os.getenv('FACE_LANDMARK_MODEL', 'large')

    # Image retrieval / decoding
    IMAGE_FETCH_TIMEOUT = float(os.getenv('IMAGE_FETCH_TIMEOUT', 5))
    IMAGE_DECODE_TIMEOUT = float(os.getenv('IMAGE_DECODE_TIMEOUT', 10))
    IMAGE_CACHE_MAX_ITEMS = int(os.getenv('IMAGE_CACHE_MAX_ITEMS', 1024))

    # Downscale bounds (larger image side, px)
    PROBE_MAX_SIZE = int(os.getenv('PROBE_MAX_SIZE', 640))
    GALLERY_MAX_SIZE = int(os.getenv('GALLERY_MAX_SIZE', 640))
    PRELOAD_MAX_SIZE = int(os.getenv('PRELOAD_MAX_SIZE', 480))

    # Batching / preload
    MATCH_BATCH_SIZE = int(os.getenv('MATCH_BATCH_SIZE', 5))
    PRELOAD_BATCH_SIZE = int(os.getenv('PRELOAD_BATCH_SIZE', 10))
    PRELOAD_SAMPLE_SIZE = int(os.getenv('PRELOAD_SAMPLE_SIZE', 20))
    PRELOAD_MIN_CACHE = int(os.getenv('PRELOAD_MIN_CACHE', 5))
    PRELOAD_ON_START = _env_bool('PRELOAD_ON_START', True)
    PRELOAD_START_DELAY = float(os.getenv('PRELOAD_START_DELAY', 5))

    # Match policy (Euclidean distance, lower = more similar)
    MATCH_HIGH_THRESHOLD = float(os.getenv('MATCH_HIGH_THRESHOLD', 0.45))
    MATCH_MEDIUM_THRESHOLD = float(os.getenv('MATCH_MEDIUM_THRESHOLD', 0.55))
    MATCH_MARGIN_THRESHOLD = float(os.getenv('MATCH_MARGIN_THRESHOLD', 0.6))
    MATCH_MARGIN_RATIO = float(os.getenv('MATCH_MARGIN_RATIO', 1.2))
