"""
Asset serving and health routes.
"""
from flask import Blueprint, send_file
from app.utils.route_decorators import handle_route_errors


def init_routes(asset_store, workflow_store, provider_factory):
    """Initialize routes with dependencies."""
    bp = Blueprint('system', __name__)

    @bp.route('/outputs/<path:filename>', methods=['GET'])
    @handle_route_errors("serving asset")
    def serve_output(filename):
        return send_file(asset_store.resolve(filename))

    @bp.route('/health', methods=['GET'])
    @handle_route_errors("health check")
    def health():
        return {
            "status": "ok",
            "workflows": len(workflow_store.names()),
            "providers": provider_factory.available(),
        }

    return bp
