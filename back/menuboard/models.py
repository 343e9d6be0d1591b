from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Annotated
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, PlainSerializer
from pydantic import Field as PydanticField
from sqlalchemy import JSON, Column, Numeric
from sqlmodel import Field, Relationship, SQLModel


def _price_to_json(value: Decimal) -> int | float:
    # Whole prices stay integers on the wire (450, not 450.0)
    if value == value.to_integral_value():
        return int(value)
    return float(value)


Price = Annotated[
    Decimal,
    PydanticField(ge=0),
    PlainSerializer(_price_to_json, return_type=int | float, when_used="json"),
]


class OrderStatus(str, Enum):
    new = "new"
    in_progress = "in_progress"
    done = "done"
    cancelled = "cancelled"


class User(SQLModel, table=True):
    id: int | None = Field(default=None, primary_key=True)
    email: str = Field(unique=True, index=True)
    hashed_password: str
    full_name: str | None = None

    restaurants: list["Restaurant"] = Relationship(back_populates="owner")


class Restaurant(SQLModel, table=True):
    # Random id: it is also the key of the public menu URL
    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    owner_id: int = Field(foreign_key="user.id", index=True)
    name: str
    description: str | None = None
    currency: str = Field(default="RUB")
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    owner: User | None = Relationship(back_populates="restaurants")


class MenuCategory(SQLModel, table=True):
    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    restaurant_id: str = Field(foreign_key="restaurant.id", index=True)
    name: str
    description: str | None = None
    position: int = Field(default=0)
    is_visible: bool = Field(default=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class MenuItem(SQLModel, table=True):
    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    restaurant_id: str = Field(foreign_key="restaurant.id", index=True)
    category_id: str | None = Field(default=None, foreign_key="menucategory.id", index=True)
    name: str
    description: str | None = None
    price: Decimal = Field(default=Decimal("0"), sa_column=Column(Numeric(12, 2), nullable=False))
    image: str | None = None
    is_visible: bool = Field(default=True)
    position: int = Field(default=0)


class Order(SQLModel, table=True):
    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    restaurant_id: str = Field(foreign_key="restaurant.id", index=True)
    # Snapshot of the cart at submission time: [{menuItemId, name, price, qty}]
    items: list[dict] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    guest_name: str | None = None
    table_number: str | None = None
    comment: str | None = None
    status: OrderStatus = Field(default=OrderStatus.new, index=True)
    # Optional client-generated key so a retried submission cannot create a second order
    submission_token: str | None = Field(default=None, unique=True, index=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), index=True)


class OrderRead(SQLModel):
    """Detached copy of an order; dumps to the wire shape with mode="json"."""
    id: str
    restaurant_id: str
    items: list[dict]
    guest_name: str | None = None
    table_number: str | None = None
    comment: str | None = None
    status: OrderStatus
    created_at: datetime


class OrderLineItem(BaseModel):
    """Immutable line item captured from a cart entry."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    menu_item_id: str = PydanticField(alias="menuItemId")
    name: str
    price: Price
    quantity: int = PydanticField(alias="qty", ge=1)

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


# Request/Response Models
class UserRegister(SQLModel):
    email: str
    password: str
    full_name: str | None = None


class RestaurantCreate(SQLModel):
    name: str
    description: str | None = None
    currency: str = "RUB"


class MenuCategoryCreate(SQLModel):
    name: str
    description: str | None = None
    position: int = 0
    is_visible: bool = True


class MenuCategoryUpdate(SQLModel):
    name: str | None = None
    description: str | None = None
    position: int | None = None
    is_visible: bool | None = None


class MenuItemCreate(SQLModel):
    name: str
    description: str | None = None
    price: Price
    image: str | None = None
    is_visible: bool = True
    position: int = 0
    category_id: str | None = None


class MenuItemUpdate(SQLModel):
    name: str | None = None
    description: str | None = None
    price: Decimal | None = Field(default=None, ge=0)
    image: str | None = None
    is_visible: bool | None = None
    position: int | None = None
    category_id: str | None = None


class OrderItemCreate(SQLModel):
    menu_item_id: str
    name: str
    price: Price
    image: str | None = None
    quantity: int = 1


class OrderCreate(SQLModel):
    items: list[OrderItemCreate]
    guest_name: str | None = None
    table_number: str | None = None
    comment: str | None = None
    submission_token: str | None = None  # Retry key generated once per checkout by the client


class OrderStatusUpdate(SQLModel):
    status: OrderStatus
