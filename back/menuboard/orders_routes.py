"""
Order API Routes

- Public ordering: guests holding the menu link submit their cart
- Owner order board: list / kanban, metrics, status changes, deletes
- Live dashboard: WebSocket streaming the owner's board in realtime
"""
import json
import logging
from typing import Annotated, Literal

from fastapi import APIRouter, Depends, HTTPException, Query, WebSocket, WebSocketDisconnect, status
from sqlmodel import Session
from starlette.concurrency import run_in_threadpool

from . import models
from .board import OrderBoard
from .cart import CartItem, CartStore
from .dashboard import OrderDashboard
from .db import get_session
from .errors import (
    GUEST_ORDER_ERROR,
    InvalidTransitionError,
    OrderError,
    OrderNotFoundError,
)
from .metrics import compute_metrics
from .security import get_current_user, get_owned_restaurant, get_user_for_token
from .status_machine import OrderStatusMachine
from .store import OrderStore, get_order_store
from .submission import OrderSubmissionService

logger = logging.getLogger(__name__)

router = APIRouter()


def owned_restaurant(
    restaurant_id: str,
    current_user: Annotated[models.User, Depends(get_current_user)],
    session: Session = Depends(get_session),
) -> models.Restaurant:
    return get_owned_restaurant(session, current_user, restaurant_id)


async def owned_order(
    order_id: str,
    current_user: Annotated[models.User, Depends(get_current_user)],
    session: Session = Depends(get_session),
    store: OrderStore = Depends(get_order_store),
) -> models.OrderRead:
    try:
        order = await store.get(order_id)
    except OrderNotFoundError:
        raise HTTPException(status_code=404, detail="Order not found")
    except OrderError as e:
        logger.error(f"Could not load order {order_id}: {e}")
        raise HTTPException(status_code=503, detail="Orders are temporarily unavailable")
    await run_in_threadpool(get_owned_restaurant, session, current_user, order.restaurant_id)
    return order


def build_cart(items: list[models.OrderItemCreate]) -> CartStore:
    cart = CartStore()
    for item in items:
        previous = cart.get(item.menu_item_id)
        already = previous.quantity if previous else 0
        cart.add_item(CartItem(
            menu_item_id=item.menu_item_id,
            name=item.name,
            price=item.price,
            image=item.image,
        ))
        cart.update_quantity(item.menu_item_id, already + item.quantity)
    return cart


# ============ PUBLIC ORDERING ============

@router.post("/menu/{restaurant_id}/order", status_code=status.HTTP_201_CREATED)
async def submit_order(
    restaurant_id: str,
    order_data: models.OrderCreate,
    session: Session = Depends(get_session),
    store: OrderStore = Depends(get_order_store),
) -> dict:
    """Public endpoint - submit the guest's cart as a new order."""
    restaurant = await run_in_threadpool(session.get, models.Restaurant, restaurant_id)
    if not restaurant:
        raise HTTPException(status_code=404, detail="Restaurant not found")

    cart = build_cart(order_data.items)
    result = await OrderSubmissionService(store).submit(
        restaurant_id,
        cart,
        guest_name=order_data.guest_name,
        table_number=order_data.table_number,
        comment=order_data.comment,
        submission_token=order_data.submission_token,
    )

    if not result.ok:
        if result.reason == "empty_cart":
            raise HTTPException(status_code=400, detail="Order must have at least one item")
        if result.retryable:
            raise HTTPException(status_code=503, detail=GUEST_ORDER_ERROR)
        raise HTTPException(status_code=409, detail=GUEST_ORDER_ERROR)

    return {
        "status": "created",
        "order_id": result.order.id,
        "order": result.order.model_dump(mode="json"),
    }


# ============ ORDER BOARD (Protected) ============

@router.get("/restaurants/{restaurant_id}/orders")
async def list_orders(
    restaurant: Annotated[models.Restaurant, Depends(owned_restaurant)],
    view: Literal["list", "kanban"] = Query("list"),
    order_status: models.OrderStatus | None = Query(None, alias="status"),
    store: OrderStore = Depends(get_order_store),
) -> dict:
    try:
        orders = await store.select(restaurant.id, newest_first=True, status=order_status)
    except OrderError as e:
        logger.error(f"Could not list orders for restaurant {restaurant.id}: {e}")
        raise HTTPException(status_code=503, detail="Orders are temporarily unavailable")

    board = OrderBoard(restaurant.id, orders)
    if view == "kanban":
        return {
            "view": "kanban",
            "columns": {
                column.value: [order.model_dump(mode="json") for order in column_orders]
                for column, column_orders in board.kanban().items()
            },
        }
    return {
        "view": "list",
        "orders": [order.model_dump(mode="json") for order in board.flat_list()],
    }


@router.get("/restaurants/{restaurant_id}/orders/metrics")
async def order_metrics(
    restaurant: Annotated[models.Restaurant, Depends(owned_restaurant)],
    store: OrderStore = Depends(get_order_store),
) -> dict:
    try:
        orders = await store.select(restaurant.id)
    except OrderError as e:
        logger.error(f"Could not load metrics for restaurant {restaurant.id}: {e}")
        raise HTTPException(status_code=503, detail="Orders are temporarily unavailable")
    return compute_metrics(orders).model_dump(mode="json")


@router.put("/orders/{order_id}/status")
async def update_order_status(
    status_update: models.OrderStatusUpdate,
    order: Annotated[models.OrderRead, Depends(owned_order)],
    store: OrderStore = Depends(get_order_store),
) -> dict:
    machine = OrderStatusMachine(store, OrderBoard(order.restaurant_id, [order]))
    try:
        updated = await machine.set_status(order.id, status_update.status)
    except InvalidTransitionError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except OrderNotFoundError:
        raise HTTPException(status_code=404, detail="Order not found")
    except OrderError:
        raise HTTPException(status_code=503, detail="Status update failed, please retry")

    return {
        "status": "updated",
        "order_id": updated.id,
        "new_status": updated.status.value,
        "order": updated.model_dump(mode="json"),
    }


@router.delete("/orders/{order_id}")
async def delete_order(
    order: Annotated[models.OrderRead, Depends(owned_order)],
    confirm: bool = Query(False, description="Deleting an order cannot be undone"),
    store: OrderStore = Depends(get_order_store),
) -> dict:
    if not confirm:
        raise HTTPException(
            status_code=status.HTTP_428_PRECONDITION_REQUIRED,
            detail="Pass confirm=true to delete this order",
        )
    machine = OrderStatusMachine(store, OrderBoard(order.restaurant_id, [order]))
    try:
        await machine.delete_order(order.id, confirmed=True)
    except OrderNotFoundError:
        raise HTTPException(status_code=404, detail="Order not found")
    except OrderError:
        raise HTTPException(status_code=503, detail="Delete failed, please retry")
    return {"status": "deleted", "order_id": order.id}


# ============ LIVE DASHBOARD ============

@router.websocket("/ws/restaurants/{restaurant_id}/orders")
async def orders_dashboard(
    websocket: WebSocket,
    restaurant_id: str,
    token: str | None = Query(None),
    session: Session = Depends(get_session),
    store: OrderStore = Depends(get_order_store),
):
    """Owner dashboard - one live board per connection, torn down on disconnect."""
    client_host = websocket.client.host if websocket.client else "unknown"
    await websocket.accept()

    token = token or websocket.cookies.get("access_token")
    if not token:
        logger.warning(f"Dashboard for restaurant {restaurant_id}: missing token from {client_host}")
        await websocket.close(code=1008, reason="Missing authentication token")
        return

    user = await run_in_threadpool(get_user_for_token, token, session)
    if user is None:
        await websocket.close(code=1008, reason="Invalid authentication token")
        return
    try:
        await run_in_threadpool(get_owned_restaurant, session, user, restaurant_id)
    except HTTPException:
        logger.warning(f"Dashboard for restaurant {restaurant_id}: {user.email} is not the owner")
        await websocket.close(code=1008, reason="Restaurant not found")
        return

    dashboard = OrderDashboard(store, restaurant_id, send=websocket.send_json)
    try:
        await dashboard.open()
    except OrderError as e:
        logger.error(f"Dashboard for restaurant {restaurant_id} could not load orders: {e}")
        await websocket.close(code=1011, reason="Orders are temporarily unavailable")
        return

    logger.info(f"Dashboard opened for restaurant {restaurant_id} by {user.email} from {client_host}")
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                message = json.loads(raw)
            except json.JSONDecodeError:
                await websocket.send_json({"type": "error", "code": "bad_request", "detail": "Invalid JSON"})
                continue
            if not isinstance(message, dict):
                await websocket.send_json({"type": "error", "code": "bad_request", "detail": "Expected an object"})
                continue
            await dashboard.handle_command(message)
    except WebSocketDisconnect:
        pass
    finally:
        await dashboard.close()
        logger.info(f"Dashboard closed for restaurant {restaurant_id}")
