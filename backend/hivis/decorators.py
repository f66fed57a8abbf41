# Overview: Request decorators for API routes.

import hmac
from functools import wraps

from flask import current_app, jsonify, request


API_KEY_HEADER = "X-API-Key"


def require_api_key(config_key: str):
    """
    Require a shared secret in the X-API-Key header.

    The expected value is read from app config at request time; when it is
    unset the check is disabled (local development and tests). Member auth is
    handled by the client-facing gateway, not here.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            expected = current_app.config.get(config_key)
            if expected:
                supplied = request.headers.get(API_KEY_HEADER, "")
                if not hmac.compare_digest(supplied.encode(), expected.encode()):
                    current_app.logger.warning("Rejected %s %s: bad API key", request.method, request.path)
                    return jsonify({"error": "Invalid or missing API key"}), 401
            return f(*args, **kwargs)
        return decorated_function
    return decorator
