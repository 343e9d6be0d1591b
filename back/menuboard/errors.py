"""
Order pipeline errors.

Cart operations never raise; everything else in the pipeline reports one of
the errors below. Routes translate them into HTTP responses, and anything a
guest can see is replaced by GUEST_ORDER_ERROR.
"""

GUEST_ORDER_ERROR = "We couldn't submit your order. Please try again."


class OrderError(Exception):
    """Base class for order pipeline failures."""


class StoreUnavailableError(OrderError):
    """The persistent store could not be reached (network/transport)."""


class PersistenceConflictError(OrderError):
    """The store rejected the write."""


class SubmissionTokenConflictError(PersistenceConflictError):
    """The submission token already belongs to another restaurant's order."""


class OrderNotFoundError(OrderError):
    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Order {order_id} not found")


class OrderValidationError(OrderError):
    """Empty cart or malformed line items."""


class InvalidTransitionError(OrderError):
    def __init__(self, order_id: str, current: str, requested: str):
        self.order_id = order_id
        self.current = current
        self.requested = requested
        super().__init__(f"Order {order_id} cannot move from {current} to {requested}")


class ConfirmationRequiredError(OrderError):
    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Deleting order {order_id} requires confirmation")


class RealtimeChannelError(OrderError):
    """The realtime subscription dropped or could not be opened."""
