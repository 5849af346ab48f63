"""HTTP API for the attendance integrity engine."""
from .api_server import create_app
__all__ = ['create_app']
