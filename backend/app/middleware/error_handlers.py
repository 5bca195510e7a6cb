"""
JSON error bodies for failures raised outside the route decorators.
"""
import logging
from flask import jsonify, request
from werkzeug.exceptions import HTTPException, InternalServerError

import config

logger = logging.getLogger(__name__)

ERROR_MESSAGES = {
    400: "Malformed request",
    404: "Not found",
    405: "Method not allowed",
    413: f"Request too large (limit {config.MAX_REQUEST_SIZE // (1024 * 1024)}MB)",
}


def register_error_handlers(app):
    """Answer every HTTP error with ``{"error": ...}`` instead of Werkzeug's HTML page."""

    @app.errorhandler(HTTPException)
    def handle_http_error(e):
        if e.code == 404:
            logger.debug("No route for %s %s", request.method, request.path)
        message = ERROR_MESSAGES.get(e.code, e.name)
        return jsonify({"error": message}), e.code

    @app.errorhandler(InternalServerError)
    def handle_internal_error(e):
        logger.error("Unhandled error on %s %s: %s", request.method, request.path,
                     e.original_exception or e)
        return jsonify({"error": "Internal server error"}), 500
