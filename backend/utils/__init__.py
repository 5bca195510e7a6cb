"""
Shared helpers for async execution, images and logging.
"""
