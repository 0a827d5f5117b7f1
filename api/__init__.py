"""
API Module for the Quiz Lead Pipeline.

FastAPI application with routes for:
- Quiz submissions and lead results
- Queue and provider administration
"""

from .main import create_app, app

__all__ = ["create_app", "app"]
