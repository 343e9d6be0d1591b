from collections.abc import Iterable
from decimal import ROUND_HALF_UP, Decimal

from pydantic import BaseModel

from .models import OrderRead, OrderStatus, Price

TOP_ITEMS_LIMIT = 5


class TopItem(BaseModel):
    menu_item_id: str
    name: str
    quantity: int


class OrderMetrics(BaseModel):
    total_revenue: Price = Decimal("0")
    order_count: int = 0
    average_order_value: int = 0
    top_items: list[TopItem] = []


def _is_number(value) -> bool:
    return isinstance(value, (int, float, Decimal)) and not isinstance(value, bool)


def _is_price(value) -> bool:
    return _is_number(value) and Decimal(str(value)).is_finite() and value >= 0


def _is_quantity(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def is_well_formed(order: OrderRead) -> bool:
    """True when every line item has a finite price >= 0 and a whole quantity >= 1."""
    if not isinstance(order.items, list):
        return False
    return all(
        isinstance(item, dict) and _is_price(item.get("price")) and _is_quantity(item.get("qty"))
        for item in order.items
    )


def compute_metrics(orders: Iterable[OrderRead]) -> OrderMetrics:
    """Revenue figures over the non-cancelled, well-formed orders.

    Pure: called again on every change of the order collection and never
    cached. Top items are ranked by quantity; on a tie the item that reached
    its total first (in collection order) ranks higher.
    """
    included = [
        order for order in orders
        if order.status != OrderStatus.cancelled and is_well_formed(order)
    ]

    total = Decimal("0")
    sold: dict[str, TopItem] = {}
    # Position of the line that last added to each item; earlier wins a tie
    last_sold: dict[str, int] = {}
    position = 0
    for order in included:
        for item in order.items:
            quantity = item["qty"]
            total += Decimal(str(item["price"])) * quantity
            menu_item_id = str(item.get("menuItemId"))
            if menu_item_id not in sold:
                sold[menu_item_id] = TopItem(menu_item_id=menu_item_id, name=item.get("name", ""), quantity=0)
            sold[menu_item_id].quantity += quantity
            last_sold[menu_item_id] = position
            position += 1

    count = len(included)
    average = 0
    if count:
        average = int((total / count).quantize(Decimal("1"), rounding=ROUND_HALF_UP))

    ranked = sorted(sold.values(), key=lambda entry: (-entry.quantity, last_sold[entry.menu_item_id]))
    top_items = ranked[:TOP_ITEMS_LIMIT]
    return OrderMetrics(
        total_revenue=total,
        order_count=count,
        average_order_value=average,
        top_items=top_items,
    )
