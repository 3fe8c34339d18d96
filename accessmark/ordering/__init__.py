"""
Per-container order lists (tab order, reading order).
"""

from .order_lists import OrderListManager, list_dataset

__all__ = ["OrderListManager", "list_dataset"]
