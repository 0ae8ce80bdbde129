"""HTTP surface of the broker"""

from .endpoints import router

__all__ = ["router"]
