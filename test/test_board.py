from datetime import datetime, timedelta, timezone

from menuboard.board import OrderBoard, merge_inserted, to_flat_list, to_kanban_columns
from menuboard.models import OrderRead, OrderStatus

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def order(order_id: str, status=OrderStatus.new, minutes=0, restaurant_id="r1") -> OrderRead:
    return OrderRead(
        id=order_id,
        restaurant_id=restaurant_id,
        items=[{"menuItemId": "borscht", "name": "Borscht", "price": 450, "qty": 1}],
        status=status,
        created_at=T0 + timedelta(minutes=minutes),
    )


class TestMergeInserted:
    def test_new_order_goes_first_and_others_keep_their_order(self):
        seeded = [order("c", minutes=3), order("b", minutes=2), order("a", minutes=1)]

        merged = merge_inserted(seeded, order("d", minutes=4))

        assert [o.id for o in merged] == ["d", "c", "b", "a"]
        assert [o.id for o in seeded] == ["c", "b", "a"]

    def test_insert_is_prepended_even_when_older(self):
        # Display order is arrival order, not created_at
        seeded = [order("b", minutes=5)]

        merged = merge_inserted(seeded, order("a", minutes=1))

        assert [o.id for o in merged] == ["a", "b"]

    def test_duplicate_delivery_is_ignored(self):
        seeded = [order("b"), order("a")]

        merged = merge_inserted(seeded, order("a"))

        assert merged is seeded


class TestProjections:
    def test_kanban_has_every_column_and_keeps_list_order(self):
        orders = [
            order("d", OrderStatus.done),
            order("c", OrderStatus.new),
            order("b", OrderStatus.in_progress),
            order("a", OrderStatus.new),
        ]

        columns = to_kanban_columns(orders)

        assert list(columns) == [OrderStatus.new, OrderStatus.in_progress, OrderStatus.done, OrderStatus.cancelled]
        assert [o.id for o in columns[OrderStatus.new]] == ["c", "a"]
        assert [o.id for o in columns[OrderStatus.in_progress]] == ["b"]
        assert [o.id for o in columns[OrderStatus.done]] == ["d"]
        assert columns[OrderStatus.cancelled] == []

    def test_flat_list_is_a_copy(self):
        orders = [order("a")]
        flat = to_flat_list(orders)
        flat.append(order("b"))
        assert len(orders) == 1


class TestOrderBoard:
    def test_seed_keeps_only_this_restaurant(self):
        board = OrderBoard("r1")
        board.seed([order("a"), order("x", restaurant_id="r2")])
        assert [o.id for o in board.orders] == ["a"]

    def test_insert_for_other_restaurant_is_ignored(self):
        board = OrderBoard("r1", [order("a")])
        assert not board.apply_insert(order("x", restaurant_id="r2"))
        assert [o.id for o in board.orders] == ["a"]

    def test_replace_shows_in_both_views(self):
        board = OrderBoard("r1", [order("b"), order("a")])

        board.replace(order("a", OrderStatus.done))

        assert [o.id for o in board.flat_list()] == ["b", "a"]
        assert board.get("a").status == OrderStatus.done
        assert [o.id for o in board.kanban()[OrderStatus.done]] == ["a"]
        assert [o.id for o in board.kanban()[OrderStatus.new]] == ["b"]

    def test_failure_mark_is_cleared_by_later_success(self):
        board = OrderBoard("r1", [order("a")])

        board.mark_failed("a", "Could not set status")
        assert board.failures == {"a": "Could not set status"}

        board.replace(order("a", OrderStatus.in_progress))
        assert board.failures == {}

    def test_remove(self):
        board = OrderBoard("r1", [order("b"), order("a")])
        board.remove("b")
        assert [o.id for o in board.orders] == ["a"]

    def test_listeners_are_notified(self):
        board = OrderBoard("r1")
        seen = []
        board.subscribe(lambda b: seen.append([o.id for o in b.orders]))

        board.seed([order("a")])
        board.apply_insert(order("b"))
        board.apply_insert(order("b"))
        board.remove("a")

        assert seen == [["a"], ["b", "a"], ["b"]]
