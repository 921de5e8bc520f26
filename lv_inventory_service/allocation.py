"""
Quantity adjustments on inventory records.

Two modes:
- stock: add to or remove from the available quantity. Removing more than is
  on hand floors at zero instead of failing.
- allocation: move quantity between available and allocated; the total is
  unchanged. Neither side may go below zero.
"""

from enum import Enum

from .exceptions import InsufficientStock
from .schemas import InventoryRecord, utcnow


class AdjustmentMode(str, Enum):
    stock = "stock"
    allocation = "allocation"


def adjust(record: InventoryRecord, delta: float, mode: AdjustmentMode = AdjustmentMode.stock) -> InventoryRecord:
    """Apply a quantity change to a record in place and return it"""
    if mode == AdjustmentMode.allocation:
        if delta > 0 and record.quantity_available < delta:
            raise InsufficientStock("Cannot allocate more than available quantity")
        if delta < 0 and record.quantity_allocated < -delta:
            raise InsufficientStock("Cannot return more than allocated quantity")

        record.quantity_available -= delta
        record.quantity_allocated += delta
    else:
        record.quantity_available = max(record.quantity_available + delta, 0)

    record.last_updated = utcnow()
    return record
