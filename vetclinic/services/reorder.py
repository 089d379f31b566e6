from typing import Optional
from vetclinic.models.inventory import InventoryItem, StockStatus


def stock_status(item: InventoryItem) -> StockStatus:
    return item.stock_status


def needs_ordering(item: InventoryItem) -> bool:
    return item.current_stock <= item.minimum_stock


def recommended_order_quantity(item: InventoryItem) -> int:
    """Top up to the optimal level when one is configured, otherwise to twice
    the minimum."""
    if item.optimal_stock:
        return max(item.optimal_stock - item.current_stock, 0)
    return max(2 * item.minimum_stock - item.current_stock, 0)


def days_until_stockout(item: InventoryItem, consumed: int, window_days: int) -> Optional[int]:
    """`consumed` is the number of units sold over the last `window_days`."""
    if consumed <= 0 or window_days <= 0:
        return None
    daily = consumed / window_days
    return int(item.current_stock // daily)
