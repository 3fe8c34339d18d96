"""
Stable link ids and their resolution to live host nodes.
"""

from .registry import LinkRegistry

__all__ = ["LinkRegistry"]
