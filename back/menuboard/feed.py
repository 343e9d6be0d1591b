"""
Live order feed for one restaurant.

On start the feed subscribes to insert events first and then seeds the board
with a bulk fetch, so nothing inserted in between is lost (the board drops
the duplicate if the fetch already saw it). Each insert is prepended and
reported through `on_insert`, which is where the dashboard plays its alert.

If the realtime channel drops, the feed re-fetches and tries to subscribe
again every `reconnect_delay` seconds until it succeeds or is closed.
"""
import asyncio
import logging
from collections.abc import Awaitable, Callable
from contextlib import suppress

from pydantic import ValidationError

from .board import OrderBoard
from .changes import Subscription
from .errors import OrderError, RealtimeChannelError
from .models import OrderRead
from .settings import settings
from .store import OrderStore

logger = logging.getLogger(__name__)

InsertHook = Callable[[OrderRead], Awaitable[None]]
ResyncHook = Callable[[list[OrderRead]], Awaitable[None]]


class OrderFeed:
    def __init__(
        self,
        store: OrderStore,
        board: OrderBoard,
        on_insert: InsertHook | None = None,
        on_resync: ResyncHook | None = None,
        reconnect_delay: float | None = None,
    ):
        self.store = store
        self.board = board
        self.restaurant_id = board.restaurant_id
        self.on_insert = on_insert
        self.on_resync = on_resync
        self.reconnect_delay = settings.feed_reconnect_delay if reconnect_delay is None else reconnect_delay
        self.loading = False
        self._subscription: Subscription | None = None
        self._task: asyncio.Task | None = None
        self._closed = False

    @property
    def connected(self) -> bool:
        return self._subscription is not None and not self._subscription.closed

    @property
    def closed(self) -> bool:
        return self._closed

    async def start(self) -> None:
        try:
            self._subscription = await self.store.subscribe(self.restaurant_id, ("insert",))
        except RealtimeChannelError as e:
            logger.warning(f"No realtime channel for restaurant {self.restaurant_id}, polling instead: {e}")
        try:
            await self.resync()
        except OrderError:
            await self.close()
            raise
        if self._closed:
            return
        self._task = asyncio.create_task(self._run(), name=f"order-feed:{self.restaurant_id}")

    async def resync(self) -> None:
        """Replace the board contents with a fresh fetch, newest first."""
        self.loading = True
        try:
            orders = await self.store.select(self.restaurant_id, newest_first=True)
        finally:
            self.loading = False
        if self._closed:
            # Fetch finished after teardown; the view is gone
            return
        self.board.seed(orders)
        if self.on_resync:
            await self.on_resync(orders)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._task and self._task is not asyncio.current_task():
            self._task.cancel()
            with suppress(asyncio.CancelledError):
                await self._task
        if self._subscription:
            await self._subscription.close()
            self._subscription = None
        logger.debug(f"Order feed for restaurant {self.restaurant_id} closed")

    async def _run(self) -> None:
        while not self._closed:
            if self._subscription is None:
                await self._reconnect()
                continue
            try:
                async for event in self._subscription:
                    if self._closed:
                        return
                    try:
                        order = OrderRead.model_validate(event.order)
                    except ValidationError as e:
                        logger.warning(f"Skipping malformed insert event for order {event.order_id}: {e}")
                        continue
                    await self._handle_insert(order)
            except RealtimeChannelError as e:
                logger.warning(f"Realtime channel for restaurant {self.restaurant_id} dropped: {e}")
            if self._closed:
                return
            self._subscription = None

    async def _handle_insert(self, order: OrderRead) -> None:
        if self.board.apply_insert(order) and self.on_insert:
            try:
                await self.on_insert(order)
            except Exception as e:
                # The order is on the board already
                logger.error(f"Insert hook failed for order {order.id}: {e}", exc_info=True)

    async def _reconnect(self) -> None:
        await asyncio.sleep(self.reconnect_delay)
        if self._closed:
            return
        try:
            subscription = await self.store.subscribe(self.restaurant_id, ("insert",))
        except RealtimeChannelError as e:
            logger.warning(f"Realtime channel for restaurant {self.restaurant_id} still down: {e}")
            subscription = None
        try:
            await self.resync()
        except OrderError as e:
            logger.warning(f"Re-fetch for restaurant {self.restaurant_id} failed: {e}")
            if subscription:
                await subscription.close()
            return
        if self._closed:
            if subscription:
                await subscription.close()
            return
        if subscription:
            logger.info(f"Realtime channel for restaurant {self.restaurant_id} restored")
        self._subscription = subscription
