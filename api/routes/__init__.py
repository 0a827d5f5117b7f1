"""
API Routes for the Quiz Lead Pipeline.
"""

from . import leads, admin

__all__ = ["leads", "admin"]
