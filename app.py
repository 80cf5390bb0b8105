"""
ArogyaNetra Face Match - Main Application
Patient identification by face photo against enrolled user portraits
"""

import os
import logging
from flask import Flask, jsonify
from flask_cors import CORS
from config import Config

logger = logging.getLogger(__name__)


def configure_logging(config=Config):
    """File + console logging."""
    handlers = [logging.StreamHandler()]
    if config.LOG_FILE:
        os.makedirs(os.path.dirname(config.LOG_FILE) or '.', exist_ok=True)
        handlers.append(logging.FileHandler(config.LOG_FILE))

    logging.basicConfig(
        level=getattr(logging, str(config.LOG_LEVEL).upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers,
    )


def create_app(config=Config, face_service=None):
    """
    Build the Flask application.

    Args:
        config: configuration object (Config attributes)
        face_service: prebuilt FaceService; built from config when omitted.
            Building it loads the descriptor model and fails fast if it is missing.
    """
    app = Flask(__name__)
    app.config.from_object(config)
    app.url_map.strict_slashes = False

    CORS(app, resources={r"/*": {"origins": config.CORS_ORIGINS}})

    if face_service is None:
        from services.face_service import FaceService
        face_service = FaceService(config)

    # Make the face service available to blueprints
    app.face_service = face_service

    from api.recognition import recognition_bp
    app.register_blueprint(recognition_bp, url_prefix='/api/v1')

    @app.route('/')
    def root():
        return jsonify({
            "success": True,
            "message": "Your server is up and running...."
        })

    @app.route('/health')
    def health():
        stats = app.face_service.get_stats()
        return jsonify({
            "status": "healthy",
            "descriptor_cache_size": stats['descriptor_cache_size'],
            "image_cache_size": stats['image_cache_size'],
        })

    return app


def main():
    configure_logging(Config)
    app = create_app(Config)

    if Config.PRELOAD_ON_START:
        app.face_service.schedule_startup_preload()

    logger.info(f"App is running at {Config.HOST}:{Config.PORT}")
    app.run(host=Config.HOST, port=Config.PORT, debug=False, threaded=True)


if __name__ == '__main__':
    main()
