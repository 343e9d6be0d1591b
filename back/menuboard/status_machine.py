import asyncio
import logging
from contextlib import asynccontextmanager

from .board import OrderBoard
from .errors import (
    ConfirmationRequiredError,
    InvalidTransitionError,
    OrderError,
    OrderNotFoundError,
)
from .models import OrderRead, OrderStatus
from .settings import settings
from .store import OrderStore

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = frozenset({OrderStatus.done, OrderStatus.cancelled})

TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.new: frozenset({OrderStatus.in_progress, OrderStatus.done, OrderStatus.cancelled}),
    OrderStatus.in_progress: frozenset({OrderStatus.done, OrderStatus.cancelled}),
    **{status: frozenset() for status in TERMINAL_STATUSES},
}


def can_transition(current: OrderStatus, requested: OrderStatus, enforce_terminal: bool = True) -> bool:
    """Check a status change.

    With enforce_terminal off any status may move to any other one, which
    lets an owner reopen an order closed by mistake.
    """
    if current == requested:
        return True
    if not enforce_terminal:
        return True
    return requested in TRANSITIONS[current]


class OrderStatusMachine:
    """
    Status changes and deletes issued from an owner's board.

    The store write always completes before the board is touched, so the
    board never shows a status that failed to save. A failed write leaves
    the last persisted status on the board and marks the row as failed.
    """

    def __init__(self, store: OrderStore, board: OrderBoard, enforce_terminal: bool | None = None):
        self.store = store
        self.board = board
        self.enforce_terminal = (
            settings.order_terminal_statuses_locked if enforce_terminal is None else enforce_terminal
        )
        self._locks: dict[str, asyncio.Lock] = {}
        # Coroutines holding or waiting for each lock
        self._lock_users: dict[str, int] = {}

    def allowed_transitions(self, order: OrderRead) -> list[OrderStatus]:
        return [
            status for status in OrderStatus
            if status != order.status and can_transition(order.status, status, self.enforce_terminal)
        ]

    async def set_status(self, order_id: str, new_status: OrderStatus) -> OrderRead:
        async with self._locked(order_id):
            order = self._require(order_id)
            if order.status == new_status:
                return order
            if not can_transition(order.status, new_status, self.enforce_terminal):
                raise InvalidTransitionError(order_id, order.status.value, new_status.value)

            try:
                updated = await self.store.update(order_id, {"status": new_status})
            except OrderError as e:
                logger.error(f"Status update {order.status.value} -> {new_status.value} for order {order_id} failed: {e}")
                self.board.mark_failed(order_id, f"Could not set status to {new_status.value}, please retry")
                raise

            self.board.replace(updated)
            logger.info(f"Order {order_id} moved from {order.status.value} to {updated.status.value}")
            return updated

    async def delete_order(self, order_id: str, confirmed: bool = False) -> None:
        async with self._locked(order_id):
            self._require(order_id)
            if not confirmed:
                raise ConfirmationRequiredError(order_id)
            try:
                await self.store.delete(order_id)
            except OrderNotFoundError:
                # Already gone from the store; drop the stale row
                self.board.remove(order_id)
                raise
            except OrderError as e:
                logger.error(f"Deleting order {order_id} failed: {e}")
                self.board.mark_failed(order_id, "Could not delete order, please retry")
                raise
            self.board.remove(order_id)

    def _require(self, order_id: str) -> OrderRead:
        order = self.board.get(order_id)
        if order is None:
            raise OrderNotFoundError(order_id)
        return order

    @asynccontextmanager
    async def _locked(self, order_id: str):
        """Serialize mutations of one order; the lock is dropped once unused."""
        lock = self._locks.setdefault(order_id, asyncio.Lock())
        self._lock_users[order_id] = self._lock_users.get(order_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[order_id] -= 1
            if not self._lock_users[order_id]:
                del self._lock_users[order_id]
                del self._locks[order_id]
