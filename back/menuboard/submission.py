import logging

from pydantic import BaseModel

from .cart import CartStore
from .errors import GUEST_ORDER_ERROR, OrderError, SubmissionTokenConflictError
from .models import Order, OrderRead, OrderStatus
from .store import OrderStore

logger = logging.getLogger(__name__)


class SubmissionResult(BaseModel):
    ok: bool
    order: OrderRead | None = None
    # Machine-readable reason: empty_cart, submission_in_progress, conflict, store_failure
    reason: str | None = None
    # Safe to show to the guest
    message: str | None = None
    retryable: bool = False

    @classmethod
    def success(cls, order: OrderRead) -> "SubmissionResult":
        return cls(ok=True, order=order)

    @classmethod
    def failure(cls, reason: str, message: str, retryable: bool = False) -> "SubmissionResult":
        return cls(ok=False, reason=reason, message=message, retryable=retryable)


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


class OrderSubmissionService:
    """
    Turns a guest's cart into exactly one persisted order.

    The cart is only cleared once the store has confirmed the write; on any
    failure it is left as it was so the guest can simply try again.
    """

    def __init__(self, store: OrderStore):
        self.store = store
        self.submitting = False

    async def submit(
        self,
        restaurant_id: str,
        cart: CartStore,
        guest_name: str | None = None,
        table_number: str | None = None,
        comment: str | None = None,
        submission_token: str | None = None,
    ) -> SubmissionResult:
        if cart.is_empty:
            return SubmissionResult.failure("empty_cart", "Your cart is empty.")
        if self.submitting:
            return SubmissionResult.failure(
                "submission_in_progress", "Your order is already being sent.", retryable=True
            )

        self.submitting = True
        try:
            order = Order(
                restaurant_id=restaurant_id,
                items=[line.to_wire() for line in cart.to_line_items()],
                guest_name=_clean(guest_name),
                table_number=_clean(table_number),
                comment=_clean(comment),
                status=OrderStatus.new,
                submission_token=_clean(submission_token),
            )
            try:
                record = await self.store.insert(order)
            except SubmissionTokenConflictError as e:
                logger.error(f"Order submission rejected for restaurant {restaurant_id}: {e}")
                return SubmissionResult.failure("conflict", GUEST_ORDER_ERROR)
            except OrderError as e:
                logger.error(f"Order submission failed for restaurant {restaurant_id}: {e}", exc_info=True)
                return SubmissionResult.failure("store_failure", GUEST_ORDER_ERROR, retryable=True)
        finally:
            self.submitting = False

        cart.clear()
        logger.info(f"Order {record.id} submitted for restaurant {restaurant_id} ({len(record.items)} lines)")
        return SubmissionResult.success(record)
