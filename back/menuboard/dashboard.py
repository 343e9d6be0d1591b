"""
Owner dashboard session.

An OrderDashboard lives exactly as long as one owner's view (a WebSocket
connection): `open` seeds the board and starts the live feed, `close` tears
the feed down. Everything the owner sees goes out through `send` as JSON
messages:
- snapshot: flat list, kanban columns, metrics, failed rows
- alert: a new order arrived (play the sound)
- error: a command failed; the board still shows the last saved state
"""
import logging
from collections.abc import Awaitable, Callable

from .board import OrderBoard
from .errors import (
    ConfirmationRequiredError,
    InvalidTransitionError,
    OrderError,
    OrderNotFoundError,
)
from .feed import OrderFeed
from .metrics import OrderMetrics, compute_metrics
from .models import OrderRead, OrderStatus
from .settings import settings
from .status_machine import OrderStatusMachine
from .store import OrderStore

logger = logging.getLogger(__name__)

Sender = Callable[[dict], Awaitable[None]]


def error_code(exc: OrderError) -> str:
    if isinstance(exc, InvalidTransitionError):
        return "invalid_transition"
    if isinstance(exc, ConfirmationRequiredError):
        return "confirmation_required"
    if isinstance(exc, OrderNotFoundError):
        return "not_found"
    return "update_failed"


class OrderDashboard:
    def __init__(
        self,
        store: OrderStore,
        restaurant_id: str,
        send: Sender,
        enforce_terminal: bool | None = None,
        reconnect_delay: float | None = None,
    ):
        self.restaurant_id = restaurant_id
        self.send = send
        self.board = OrderBoard(restaurant_id)
        self.feed = OrderFeed(
            store,
            self.board,
            on_insert=self._on_insert,
            on_resync=self._on_resync,
            reconnect_delay=reconnect_delay,
        )
        self.status_machine = OrderStatusMachine(store, self.board, enforce_terminal=enforce_terminal)

    @property
    def metrics(self) -> OrderMetrics:
        return compute_metrics(self.board.orders)

    async def open(self) -> None:
        await self.feed.start()

    async def close(self) -> None:
        await self.feed.close()

    def snapshot(self) -> dict:
        orders = self.board.flat_list()
        return {
            "type": "snapshot",
            "restaurant_id": self.restaurant_id,
            "connected": self.feed.connected,
            "loading": self.feed.loading,
            "orders": [order.model_dump(mode="json") for order in orders],
            "kanban": {
                status.value: [order.id for order in column]
                for status, column in self.board.kanban().items()
            },
            "allowed_transitions": {
                order.id: [status.value for status in self.status_machine.allowed_transitions(order)]
                for order in orders
            },
            "failures": dict(self.board.failures),
            "metrics": self.metrics.model_dump(mode="json"),
        }

    async def set_status(self, order_id: str, status: OrderStatus) -> OrderRead:
        try:
            return await self.status_machine.set_status(order_id, status)
        finally:
            await self._push_snapshot()

    async def delete_order(self, order_id: str, confirmed: bool = False) -> None:
        try:
            await self.status_machine.delete_order(order_id, confirmed=confirmed)
        finally:
            await self._push_snapshot()

    async def handle_command(self, message: dict) -> None:
        """Run one command sent by the owner's client."""
        action = message.get("action")
        order_id = message.get("order_id")
        try:
            if action == "set_status":
                try:
                    new_status = OrderStatus(message.get("status"))
                except ValueError:
                    await self._send_error(action, order_id, "bad_request", f"Unknown status: {message.get('status')}")
                    return
                await self.set_status(order_id, new_status)
            elif action == "delete":
                await self.delete_order(order_id, confirmed=bool(message.get("confirm")))
            elif action == "resync":
                await self.feed.resync()
            else:
                await self._send_error(action, order_id, "bad_request", f"Unknown action: {action}")
        except OrderError as e:
            await self._send_error(action, order_id, error_code(e), str(e))

    async def _on_insert(self, order: OrderRead) -> None:
        await self.send({
            "type": "alert",
            "order_id": order.id,
            "sound_url": settings.order_alert_sound_url,
        })
        await self._push_snapshot()

    async def _on_resync(self, orders: list[OrderRead]) -> None:
        await self._push_snapshot()

    async def _push_snapshot(self) -> None:
        if self.feed.closed:
            return
        await self.send(self.snapshot())

    async def _send_error(self, action, order_id, code: str, detail: str) -> None:
        logger.info(f"Dashboard command {action} on order {order_id} failed: {detail}")
        await self.send({
            "type": "error",
            "action": action,
            "order_id": order_id,
            "code": code,
            "detail": detail,
        })
