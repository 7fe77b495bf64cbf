"""
Client for the remote document extraction API.
"""

from .client import ExtractionClient, clean_numeric_value, map_response

__all__ = ["ExtractionClient", "clean_numeric_value", "map_response"]
