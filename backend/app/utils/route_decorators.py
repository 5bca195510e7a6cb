"""
Route decorators for consistent error mapping and response formatting.

Route handlers return plain dicts (optionally with a status code) and raise
exceptions for failures; the decorator turns both into JSON responses.
"""

import logging
from functools import wraps
from flask import jsonify

logger = logging.getLogger(__name__)


def _error_response(desc, exc):
    """Map an exception raised by a route handler to a JSON error response."""
    if isinstance(exc, ValueError):
        logger.warning("%s - invalid request: %s", desc, exc)
        return jsonify({"error": str(exc)}), 400
    if isinstance(exc, LookupError):
        logger.info("%s - not found: %s", desc, exc)
        return jsonify({"error": str(exc.args[0]) if exc.args else "Not found"}), 404
    logger.exception("Error in %s: %s", desc, exc)
    return jsonify({"error": str(exc)}), 500


def handle_route_errors(route_description=None):
    """
    Decorator to standardize error handling across all routes.

    Handles:
    - ValueError (including graph validation errors) → 400 Bad Request
    - LookupError (unknown workflow, job, batch or asset) → 404 Not Found
    - Exception → 500 Internal Server Error, with the traceback logged
    - Automatic JSON response formatting via jsonify()

    Args:
        route_description: Optional human-readable description for logging.
                          Defaults to the function name.

    Usage:
        @bp.route('/jobs/<job_id>', methods=['GET'])
        @handle_route_errors("fetching job")
        def get_job(job_id):
            job = job_store.get(job_id)
            if job is None:
                raise LookupError(f"Job not found: {job_id}")
            return job.to_dict()
    """
    def decorator(f):
        desc = route_description or f.__name__

        @wraps(f)
        def wrapper(*args, **kwargs):
            try:
                result = f(*args, **kwargs)
            except Exception as e:
                return _error_response(desc, e)
            return _format_response(result)

        return wrapper

    return decorator


def _format_response(result):
    """
    Format route handler response for Flask.

    Response objects pass through untouched; dicts and lists are jsonified,
    including the first element of a ``(data, status)`` tuple.
    """
    if hasattr(result, 'status_code'):
        return result

    if isinstance(result, tuple):
        data = result[0]
        rest = result[1:]
        if isinstance(data, (dict, list)):
            return (jsonify(data), *rest)
        return result

    if isinstance(result, (dict, list)):
        return jsonify(result)

    return result
