from functools import wraps
from flask import current_app, jsonify, request
import hmac
import logging

logger = logging.getLogger(__name__)


def require_service_token(f):
    """
    Require the dashboard's shared service token.
    Usage: Authorization: Bearer <ENGINE_API_TOKEN>
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get('Authorization', '')

        if not auth_header.startswith('Bearer '):
            return jsonify({
                'error': 'unauthorized',
                'message': 'Missing or invalid Authorization header. Use: Authorization: Bearer YOUR_TOKEN'
            }), 401

        token = auth_header.replace('Bearer ', '').strip()
        expected = current_app.config.get('ENGINE_API_TOKEN') or ''

        if not expected:
            logger.error("ENGINE_API_TOKEN is not configured; rejecting request")
            return jsonify({
                'error': 'unauthorized',
                'message': 'Service token is not configured'
            }), 401

        if not hmac.compare_digest(token.encode('utf-8'), expected.encode('utf-8')):
            return jsonify({
                'error': 'unauthorized',
                'message': 'Invalid service token'
            }), 401

        return f(*args, **kwargs)

    return decorated_function
