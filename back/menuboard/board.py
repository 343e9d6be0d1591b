"""
The owner's order collection.

One OrderBoard holds the orders of one restaurant, newest event first. The
flat list and the kanban board are projections of that single list, so a
status change shows up in both without a reload.
"""
from collections.abc import Callable

from .models import OrderRead, OrderStatus

KANBAN_COLUMNS = (
    OrderStatus.new,
    OrderStatus.in_progress,
    OrderStatus.done,
    OrderStatus.cancelled,
)


def merge_inserted(orders: list[OrderRead], incoming: OrderRead) -> list[OrderRead]:
    """Prepend a newly inserted order without re-sorting the others.

    An order that is already present (delivered twice, or seen by a fetch
    that raced the subscription) leaves the list unchanged.
    """
    if any(order.id == incoming.id for order in orders):
        return orders
    return [incoming, *orders]


def to_flat_list(orders: list[OrderRead]) -> list[OrderRead]:
    return list(orders)


def to_kanban_columns(orders: list[OrderRead]) -> dict[OrderStatus, list[OrderRead]]:
    columns: dict[OrderStatus, list[OrderRead]] = {status: [] for status in KANBAN_COLUMNS}
    for order in orders:
        columns[order.status].append(order)
    return columns


class OrderBoard:
    def __init__(self, restaurant_id: str, orders: list[OrderRead] | None = None):
        self.restaurant_id = restaurant_id
        self.orders: list[OrderRead] = []
        # order_id -> message for rows whose last mutation did not persist
        self.failures: dict[str, str] = {}
        self._listeners: list[Callable[["OrderBoard"], None]] = []
        if orders:
            self.seed(orders)

    def get(self, order_id: str) -> OrderRead | None:
        for order in self.orders:
            if order.id == order_id:
                return order
        return None

    def seed(self, orders: list[OrderRead]) -> None:
        self.orders = [order for order in orders if order.restaurant_id == self.restaurant_id]
        known = {order.id for order in self.orders}
        self.failures = {order_id: msg for order_id, msg in self.failures.items() if order_id in known}
        self._notify()

    def apply_insert(self, order: OrderRead) -> bool:
        """Merge a realtime insert; returns False when nothing changed."""
        if order.restaurant_id != self.restaurant_id:
            return False
        merged = merge_inserted(self.orders, order)
        if merged is self.orders:
            return False
        self.orders = merged
        self._notify()
        return True

    def replace(self, order: OrderRead) -> None:
        """Swap in the persisted version of an order, keeping its position."""
        for index, existing in enumerate(self.orders):
            if existing.id == order.id:
                self.orders[index] = order
                break
        self.failures.pop(order.id, None)
        self._notify()

    def remove(self, order_id: str) -> None:
        self.orders = [order for order in self.orders if order.id != order_id]
        self.failures.pop(order_id, None)
        self._notify()

    def mark_failed(self, order_id: str, message: str) -> None:
        self.failures[order_id] = message
        self._notify()

    def flat_list(self) -> list[OrderRead]:
        return to_flat_list(self.orders)

    def kanban(self) -> dict[OrderStatus, list[OrderRead]]:
        return to_kanban_columns(self.orders)

    def subscribe(self, listener: Callable[["OrderBoard"], None]) -> None:
        self._listeners.append(listener)

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener(self)
