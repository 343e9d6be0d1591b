from collections.abc import Callable
from decimal import Decimal

from pydantic import BaseModel, Field

from .models import MenuItem, OrderLineItem, Price


class CartItem(BaseModel):
    """A menu item as offered to the cart (no quantity yet)."""
    menu_item_id: str
    name: str
    price: Price
    image: str | None = None

    @classmethod
    def from_menu_item(cls, item: MenuItem) -> "CartItem":
        return cls(menu_item_id=item.id, name=item.name, price=item.price, image=item.image)


class CartEntry(CartItem):
    quantity: int = Field(default=1, ge=1)

    def to_line_item(self) -> OrderLineItem:
        return OrderLineItem(
            menu_item_id=self.menu_item_id,
            name=self.name,
            price=self.price,
            quantity=self.quantity,
        )


class CartStore:
    """
    Items a guest has picked but not ordered yet.

    One instance per ordering session; nothing is persisted. Listeners
    registered with `subscribe` are called after every change.
    """

    def __init__(self) -> None:
        self._entries: dict[str, CartEntry] = {}
        self._listeners: list[Callable[["CartStore"], None]] = []

    @property
    def entries(self) -> list[CartEntry]:
        return list(self._entries.values())

    @property
    def total(self) -> Decimal:
        return sum(
            (entry.price * entry.quantity for entry in self._entries.values()),
            Decimal("0"),
        )

    @property
    def count(self) -> int:
        return sum(entry.quantity for entry in self._entries.values())

    @property
    def is_empty(self) -> bool:
        return not self._entries

    def get(self, menu_item_id: str) -> CartEntry | None:
        return self._entries.get(menu_item_id)

    def add_item(self, item: CartItem) -> None:
        existing = self._entries.get(item.menu_item_id)
        if existing:
            existing.quantity += 1
        else:
            self._entries[item.menu_item_id] = CartEntry(**item.model_dump(exclude={"quantity"}), quantity=1)
        self._notify()

    def remove_item(self, menu_item_id: str) -> None:
        if self._entries.pop(menu_item_id, None) is not None:
            self._notify()

    def update_quantity(self, menu_item_id: str, qty: int) -> None:
        entry = self._entries.get(menu_item_id)
        if entry is None:
            return
        # Removal goes through remove_item; this never drops below one
        entry.quantity = max(1, qty)
        self._notify()

    def clear(self) -> None:
        self._entries.clear()
        self._notify()

    def to_line_items(self) -> list[OrderLineItem]:
        return [entry.to_line_item() for entry in self._entries.values()]

    def subscribe(self, listener: Callable[["CartStore"], None]) -> Callable[[], None]:
        """Register a change listener; returns a function that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener(self)
