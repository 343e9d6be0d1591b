"""
Persistent order store.

Async facade over the SQLModel tables used by the whole order pipeline:
insert / update / delete / select / subscribe. Blocking session work runs in
the threadpool; every committed write is then published on the change feed.
A failed publish is logged and never fails the write, since the row is
already the source of truth.
"""
import logging
from collections.abc import Callable, Iterable
from typing import Any, TypeVar

from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError, SQLAlchemyError
from sqlmodel import Session, select
from starlette.concurrency import run_in_threadpool

from .changes import ChangeFeed, OrderEvent, Subscription, get_change_feed
from .errors import (
    OrderNotFoundError,
    OrderValidationError,
    PersistenceConflictError,
    RealtimeChannelError,
    StoreUnavailableError,
    SubmissionTokenConflictError,
)
from .models import Order, OrderRead, OrderStatus

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Fields an update may touch; line items are a snapshot and never change
UPDATABLE_FIELDS = {"status", "guest_name", "table_number", "comment"}


class OrderStore:
    def __init__(self, engine, changes: ChangeFeed):
        self.engine = engine
        self.changes = changes

    # ============ WRITES ============

    async def insert(self, order: Order) -> OrderRead:
        """Persist a new order and return it with its generated id.

        When the order carries a submission token that was already stored,
        the existing order is returned and nothing new is written.
        """
        created, record = await self._run(self._insert, order)
        if created:
            await self._publish("insert", record)
        return record

    async def update(self, order_id: str, changes: dict[str, Any]) -> OrderRead:
        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise OrderValidationError(f"Cannot update order fields: {', '.join(sorted(unknown))}")
        record = await self._run(self._update, order_id, changes)
        await self._publish("update", record)
        return record

    async def delete(self, order_id: str) -> None:
        record = await self._run(self._delete, order_id)
        await self._publish("delete", record, include_order=False)

    # ============ READS ============

    async def get(self, order_id: str) -> OrderRead:
        return await self._run(self._get, order_id)

    async def select(
        self,
        restaurant_id: str,
        newest_first: bool = True,
        status: OrderStatus | None = None,
    ) -> list[OrderRead]:
        return await self._run(self._select, restaurant_id, newest_first, status)

    async def subscribe(self, restaurant_id: str, event_types: Iterable[str] = ("insert",)) -> Subscription:
        return await self.changes.subscribe(restaurant_id, event_types)

    # ============ SESSION WORK (threadpool) ============

    def _insert(self, order: Order) -> tuple[bool, OrderRead]:
        with Session(self.engine) as session:
            existing = self._find_by_token(session, order)
            if existing:
                return False, existing
            session.add(order)
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                # A retry with the same token may have landed in between
                existing = self._find_by_token(session, order)
                if existing:
                    return False, existing
                raise
            session.refresh(order)
            logger.info(f"Order {order.id} stored for restaurant {order.restaurant_id}")
            return True, OrderRead.model_validate(order)

    def _find_by_token(self, session: Session, order: Order) -> OrderRead | None:
        if not order.submission_token:
            return None
        existing = session.exec(
            select(Order).where(Order.submission_token == order.submission_token)
        ).first()
        if existing is None:
            return None
        if existing.restaurant_id != order.restaurant_id:
            raise SubmissionTokenConflictError("Submission token already used for another restaurant")
        logger.info(f"Submission token reused; returning existing order {existing.id}")
        return OrderRead.model_validate(existing)

    def _update(self, order_id: str, changes: dict[str, Any]) -> OrderRead:
        with Session(self.engine) as session:
            order = session.get(Order, order_id)
            if order is None:
                raise OrderNotFoundError(order_id)
            for key, value in changes.items():
                setattr(order, key, value)
            session.add(order)
            session.commit()
            session.refresh(order)
            return OrderRead.model_validate(order)

    def _delete(self, order_id: str) -> OrderRead:
        with Session(self.engine) as session:
            order = session.get(Order, order_id)
            if order is None:
                raise OrderNotFoundError(order_id)
            record = OrderRead.model_validate(order)
            session.delete(order)
            session.commit()
            logger.info(f"Order {order_id} deleted")
            return record

    def _get(self, order_id: str) -> OrderRead:
        with Session(self.engine) as session:
            order = session.get(Order, order_id)
            if order is None:
                raise OrderNotFoundError(order_id)
            return OrderRead.model_validate(order)

    def _select(self, restaurant_id: str, newest_first: bool, status: OrderStatus | None) -> list[OrderRead]:
        with Session(self.engine) as session:
            statement = select(Order).where(Order.restaurant_id == restaurant_id)
            if status is not None:
                statement = statement.where(Order.status == status)
            order_by = Order.created_at.desc() if newest_first else Order.created_at.asc()
            orders = session.exec(statement.order_by(order_by)).all()
            return [OrderRead.model_validate(order) for order in orders]

    # ============ HELPERS ============

    async def _run(self, fn: Callable[..., T], *args: Any) -> T:
        try:
            return await run_in_threadpool(fn, *args)
        except IntegrityError as e:
            raise PersistenceConflictError(f"Write rejected by store: {e.orig}") from e
        except (OperationalError, InterfaceError) as e:
            raise StoreUnavailableError(f"Store unreachable: {e.orig}") from e
        except SQLAlchemyError as e:
            raise PersistenceConflictError(f"Write rejected by store: {e}") from e

    async def _publish(self, event_type: str, record: OrderRead, include_order: bool = True) -> None:
        event = OrderEvent(
            type=event_type,
            restaurant_id=record.restaurant_id,
            order_id=record.id,
            order=record.model_dump(mode="json") if include_order else None,
        )
        try:
            await self.changes.publish(event)
        except RealtimeChannelError as e:
            logger.warning(f"Order {record.id} saved but {event_type} event not delivered: {e}")


_order_store: OrderStore | None = None


def get_order_store() -> OrderStore:
    global _order_store
    if _order_store is None:
        from .db import engine

        _order_store = OrderStore(engine, get_change_feed())
    return _order_store
