"""
API route modules
"""

__all__ = ["insights", "debug"]
