"""
Recognition API - patient identification by face photo
Also exposes the descriptor cache administration endpoints.
"""
from flask import Blueprint, request, jsonify, current_app
import logging

from engines.face_matching import ExtractionError, NoFaceDetected

recognition_bp = Blueprint('recognition', __name__)
logger = logging.getLogger(__name__)


def _read_photo():
    """Uploaded probe photo bytes, or None if no photo was sent."""
    photo = request.files.get('photo')
    if photo is None:
        return None
    data = photo.read()
    return data or None


@recognition_bp.route('/recognize', methods=['POST'])
def recognize():
    """Identify the user in an uploaded photo."""
    try:
        data = _read_photo()
        if data is None:
            return jsonify({"success": False, "message": "No image file provided."}), 400

        face_service = current_app.face_service
        try:
            result = face_service.recognize(data)
        except NoFaceDetected as e:
            logger.info(f"Probe photo rejected: {e}")
            return jsonify({
                "success": False,
                "message": "No face detected in the provided image. "
                           "Please ensure your face is clearly visible and well-lit."
            }), 404
        except ExtractionError as e:
            logger.info(f"Probe photo unreadable: {e}")
            return jsonify({"success": False, "message": f"Could not read the provided image: {e}"}), 400

        if not result.matched:
            return jsonify({
                "success": False,
                "message": "No matching face found. Please try again or register if you are a new user."
            }), 404

        return jsonify({
            "success": True,
            "message": "User found",
            "user": result.identity.to_dict(),
            "match": result.to_dict(),
        })

    except Exception as e:
        logger.exception("Face recognition error")
        return jsonify({"success": False, "message": f"Error during face recognition: {e}"}), 500


@recognition_bp.route('/test-recognition', methods=['POST'])
def test_recognition():
    """Distance between an uploaded photo and one user's portrait, with threshold analysis."""
    try:
        data = _read_photo()
        if data is None:
            return jsonify({"success": False, "message": "No image file provided."}), 400

        user_id = request.form.get('userId')
        if not user_id:
            return jsonify({"success": False, "message": "Please provide a userId to compare against"}), 400

        try:
            result = current_app.face_service.test_recognition(data, user_id)
        except ExtractionError as e:
            return jsonify({"success": False, "message": f"No face detected: {e}"}), 404

        if result is None:
            return jsonify({"success": False, "message": "User not found or has no profile image"}), 404

        return jsonify({"success": True, **result})

    except Exception as e:
        logger.exception("Error in test recognition")
        return jsonify({"success": False, "message": f"Error during test recognition: {e}"}), 500


@recognition_bp.route('/preload-user-images', methods=['GET', 'POST'])
def preload_user_images():
    """Compute descriptors for every user lacking one."""
    try:
        report = current_app.face_service.preload_all()
        return jsonify({
            "success": True,
            "message": f"Preloaded {report.loaded} user images and computed "
                       f"{report.computed} face descriptors ({report.errors} errors)",
            **report.to_dict(),
        })
    except Exception as e:
        logger.exception("Error preloading user data")
        return jsonify({"success": False, "message": f"Error preloading user data: {e}"}), 500


@recognition_bp.route('/refresh-user-descriptors', methods=['POST'])
def refresh_user_descriptors():
    """Recompute descriptors for users whose portrait changed."""
    try:
        data = request.get_json(silent=True) or {}
        user_ids = data.get('userIds')
        if not isinstance(user_ids, list):
            return jsonify({"success": False, "message": "Please provide an array of user IDs to refresh"}), 400

        face_service = current_app.face_service
        if not face_service.gallery.get_identities(user_ids):
            return jsonify({"success": False, "message": "No users found with the provided IDs"}), 404

        report = face_service.refresh(user_ids)
        return jsonify({
            "success": True,
            "message": f"Refreshed {report.refreshed} user descriptors ({report.errors} errors)",
            **report.to_dict(),
        })
    except Exception as e:
        logger.exception("Error refreshing user descriptors")
        return jsonify({"success": False, "message": f"Error refreshing user descriptors: {e}"}), 500


@recognition_bp.route('/clear-face-cache', methods=['POST'])
def clear_face_cache():
    """Drop every cached face descriptor."""
    try:
        removed = current_app.face_service.clear_cache()
        return jsonify({
            "success": True,
            "message": f"Cleared {removed} entries from face descriptor cache",
            "removed": removed,
        })
    except Exception as e:
        logger.exception("Error clearing face cache")
        return jsonify({"success": False, "message": f"Error clearing face cache: {e}"}), 500


@recognition_bp.route('/face-recognition-stats', methods=['GET'])
def face_recognition_stats():
    try:
        stats = current_app.face_service.get_stats()
        return jsonify({
            "success": True,
            "cacheSize": stats['descriptor_cache_size'],
            "imagesCached": stats['image_cache_size'],
            "stats": stats,
            "message": "Face recognition system statistics",
        })
    except Exception as e:
        logger.exception("Error getting face recognition stats")
        return jsonify({"success": False, "message": f"Error getting face recognition stats: {e}"}), 500
