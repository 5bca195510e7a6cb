"""
Request handling utilities for the route blueprints.
"""
from .request_validators import RequestField, extract_json_fields, extract_query_params
from .route_decorators import handle_route_errors

__all__ = ['RequestField', 'extract_json_fields', 'extract_query_params', 'handle_route_errors']
