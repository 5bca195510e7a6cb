"""
Flask application layer: route blueprints, background job services and middleware.
"""
