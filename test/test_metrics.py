from datetime import datetime, timezone

from menuboard.metrics import compute_metrics, is_well_formed
from menuboard.models import OrderRead, OrderStatus

_counter = 0


def order(status: OrderStatus, *items) -> OrderRead:
    global _counter
    _counter += 1
    return OrderRead(
        id=f"o{_counter}",
        restaurant_id="r1",
        items=list(items),
        status=status,
        created_at=datetime.now(timezone.utc),
    )


def line(menu_item_id: str, price, qty) -> dict:
    return {"menuItemId": menu_item_id, "name": menu_item_id, "price": price, "qty": qty}


class TestComputeMetrics:
    def test_cancelled_orders_are_excluded(self):
        metrics = compute_metrics([
            order(OrderStatus.new, line("soup", 500, 1)),
            order(OrderStatus.cancelled, line("caviar", 9999, 1)),
            order(OrderStatus.done, line("tea", 300, 1)),
        ])

        assert metrics.total_revenue == 800
        assert metrics.order_count == 2
        assert metrics.average_order_value == 400

    def test_no_orders(self):
        metrics = compute_metrics([])

        assert metrics.total_revenue == 0
        assert metrics.order_count == 0
        assert metrics.average_order_value == 0
        assert metrics.top_items == []

    def test_average_rounds_half_up(self):
        metrics = compute_metrics([
            order(OrderStatus.new, line("a", 100, 1)),
            order(OrderStatus.new, line("b", 101, 1)),
        ])

        assert metrics.total_revenue == 201
        assert metrics.average_order_value == 101

    def test_malformed_orders_are_skipped(self):
        metrics = compute_metrics([
            order(OrderStatus.new, line("soup", 500, 2)),
            order(OrderStatus.new, line("tea", "300", 1)),
            order(OrderStatus.new, line("kvass", 100, True)),
            order(OrderStatus.new, {"menuItemId": "x", "name": "x", "price": 50}),
        ])

        assert metrics.total_revenue == 1000
        assert metrics.order_count == 1

    def test_negative_price_is_skipped(self):
        metrics = compute_metrics([
            order(OrderStatus.new, line("soup", 500, 1)),
            order(OrderStatus.new, line("refund", -100, 1)),
        ])

        assert metrics.total_revenue == 500
        assert metrics.order_count == 1
        assert [i.name for i in metrics.top_items] == ["soup"]

    def test_fractional_and_zero_quantities_are_skipped(self):
        metrics = compute_metrics([
            order(OrderStatus.new, line("soup", 100, 2)),
            order(OrderStatus.new, line("tea", 100, 1.5)),
            order(OrderStatus.new, line("kvass", 100, 0)),
        ])

        assert metrics.total_revenue == 200
        assert metrics.order_count == 1
        assert [(i.name, i.quantity) for i in metrics.top_items] == [("soup", 2)]

    def test_top_items_ranked_by_quantity(self):
        metrics = compute_metrics([
            order(OrderStatus.new, line("A", 100, 3)),
            order(OrderStatus.in_progress, line("B", 100, 5)),
            order(OrderStatus.done, line("A", 100, 2), line("C", 100, 1)),
        ])

        assert metrics.top_items[0].name == "B"
        assert metrics.top_items[0].quantity == 5
        assert [(i.name, i.quantity) for i in metrics.top_items] == [("B", 5), ("A", 5), ("C", 1)]
        assert len(metrics.top_items) <= 5

    def test_top_items_limited_to_five_and_ties_go_to_earliest_total(self):
        items = [line(name, 10, 1) for name in "ABCDEFG"]
        metrics = compute_metrics([order(OrderStatus.new, *items)])

        assert [i.name for i in metrics.top_items] == ["A", "B", "C", "D", "E"]

    def test_cancelled_orders_do_not_count_toward_top_items(self):
        metrics = compute_metrics([
            order(OrderStatus.cancelled, line("A", 100, 50)),
            order(OrderStatus.new, line("B", 100, 1)),
        ])

        assert [i.name for i in metrics.top_items] == ["B"]

    def test_fractional_prices(self):
        metrics = compute_metrics([order(OrderStatus.new, line("tea", 1.1, 3))])
        assert str(metrics.total_revenue) == "3.3"

    def test_json_dump(self):
        metrics = compute_metrics([order(OrderStatus.new, line("soup", 450, 2))])

        assert metrics.model_dump(mode="json") == {
            "total_revenue": 900,
            "order_count": 1,
            "average_order_value": 900,
            "top_items": [{"menu_item_id": "soup", "name": "soup", "quantity": 2}],
        }


def test_is_well_formed():
    assert is_well_formed(order(OrderStatus.new, line("a", 1, 1)))
    assert not is_well_formed(order(OrderStatus.new, line("a", None, 1)))
    assert not is_well_formed(order(OrderStatus.new, line("a", float("inf"), 1)))
    assert not is_well_formed(order(OrderStatus.new, line("a", float("nan"), 1)))
    assert not is_well_formed(order(OrderStatus.new, line("a", 1, -1)))
