"""
Monitoring helpers for the Quiz Lead Pipeline.
"""

from . import metrics

__all__ = ["metrics"]
