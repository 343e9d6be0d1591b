import logging
from contextlib import asynccontextmanager
from typing import Annotated

from fastapi import Depends, FastAPI, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordRequestForm
from sqlmodel import Session, select

from . import models, security
from .changes import get_change_feed
from .db import check_db_connection, create_db_and_tables, get_session
from .orders_routes import router as orders_router
from .settings import settings

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting application...")
    create_db_and_tables()
    changes = get_change_feed()
    yield
    await changes.close()


app = FastAPI(
    title="Menuboard API",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)

# Parse CORS origins from environment (comma-separated)
cors_origins_list = [
    origin.strip()
    for origin in settings.cors_origins.split(",")
    if origin.strip()
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(orders_router, tags=["Orders"])


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


@app.get("/health/db")
def health_db() -> dict:
    """Check database connection."""
    try:
        check_db_connection()
    except Exception as e:
        raise HTTPException(status_code=503, detail=f"Database error: {e}")
    return {"status": "ok", "database": "connected"}


# ============ AUTH ============

@app.post("/register", status_code=status.HTTP_201_CREATED)
def register(
    user_data: models.UserRegister,
    session: Session = Depends(get_session)
) -> dict:
    existing_user = session.exec(select(models.User).where(models.User.email == user_data.email)).first()
    if existing_user:
        raise HTTPException(status_code=400, detail="Email already registered")

    user = models.User(
        email=user_data.email,
        hashed_password=security.get_password_hash(user_data.password),
        full_name=user_data.full_name,
    )
    session.add(user)
    session.commit()
    session.refresh(user)
    logger.info(f"Registered owner {user.email}")
    return {"status": "created", "user_id": user.id, "email": user.email}


@app.post("/token")
def login_for_access_token(
    form_data: Annotated[OAuth2PasswordRequestForm, Depends()],
    session: Session = Depends(get_session)
):
    statement = select(models.User).where(models.User.email == form_data.username)
    user = session.exec(statement).first()

    if not user or not security.verify_password(form_data.password, user.hashed_password):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect username or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    access_token = security.create_access_token(
        data={"sub": user.email},
        expires_delta=security.timedelta(minutes=settings.access_token_expire_minutes)
    )

    response = JSONResponse(content={"access_token": access_token, "token_type": "bearer"})
    response.set_cookie(
        key="access_token",
        value=access_token,
        httponly=True,
        secure=settings.is_production,  # Only enforce HTTPS in production
        samesite="lax",
        path="/",
        max_age=settings.access_token_expire_minutes * 60
    )
    return response


@app.post("/logout")
def logout():
    response = JSONResponse(content={"status": "success", "message": "Logged out"})
    response.delete_cookie(key="access_token", path="/")
    return response


# ============ RESTAURANTS & MENU ============

@app.post("/restaurants", status_code=status.HTTP_201_CREATED)
def create_restaurant(
    restaurant_data: models.RestaurantCreate,
    current_user: Annotated[models.User, Depends(security.get_current_user)],
    session: Session = Depends(get_session)
) -> dict:
    restaurant = models.Restaurant(owner_id=current_user.id, **restaurant_data.model_dump())
    session.add(restaurant)
    session.commit()
    session.refresh(restaurant)
    return {
        **restaurant.model_dump(mode="json", exclude={"owner_id"}),
        "menu_url": settings.public_menu_url(restaurant.id),
    }


@app.get("/restaurants")
def list_restaurants(
    current_user: Annotated[models.User, Depends(security.get_current_user)],
    session: Session = Depends(get_session)
) -> list[dict]:
    restaurants = session.exec(
        select(models.Restaurant)
        .where(models.Restaurant.owner_id == current_user.id)
        .order_by(models.Restaurant.created_at)
    ).all()
    return [
        {
            **restaurant.model_dump(mode="json", exclude={"owner_id"}),
            "menu_url": settings.public_menu_url(restaurant.id),
        }
        for restaurant in restaurants
    ]


def get_owned_category(session: Session, user: models.User, category_id: str) -> models.MenuCategory:
    category = session.get(models.MenuCategory, category_id)
    if not category:
        raise HTTPException(status_code=404, detail="Category not found")
    security.get_owned_restaurant(session, user, category.restaurant_id)
    return category


def check_category(session: Session, restaurant_id: str, category_id: str | None) -> None:
    if category_id is None:
        return
    category = session.get(models.MenuCategory, category_id)
    if not category or category.restaurant_id != restaurant_id:
        raise HTTPException(status_code=400, detail="Category does not belong to this restaurant")


@app.post("/restaurants/{restaurant_id}/categories", status_code=status.HTTP_201_CREATED)
def create_category(
    restaurant_id: str,
    category_data: models.MenuCategoryCreate,
    current_user: Annotated[models.User, Depends(security.get_current_user)],
    session: Session = Depends(get_session)
) -> models.MenuCategory:
    restaurant = security.get_owned_restaurant(session, current_user, restaurant_id)
    category = models.MenuCategory(restaurant_id=restaurant.id, **category_data.model_dump())
    session.add(category)
    session.commit()
    session.refresh(category)
    return category


@app.get("/restaurants/{restaurant_id}/categories")
def list_categories(
    restaurant_id: str,
    current_user: Annotated[models.User, Depends(security.get_current_user)],
    session: Session = Depends(get_session)
) -> list[models.MenuCategory]:
    restaurant = security.get_owned_restaurant(session, current_user, restaurant_id)
    return session.exec(
        select(models.MenuCategory)
        .where(models.MenuCategory.restaurant_id == restaurant.id)
        .order_by(models.MenuCategory.position)
    ).all()


@app.put("/categories/{category_id}")
def update_category(
    category_id: str,
    category_update: models.MenuCategoryUpdate,
    current_user: Annotated[models.User, Depends(security.get_current_user)],
    session: Session = Depends(get_session)
) -> models.MenuCategory:
    category = get_owned_category(session, current_user, category_id)
    for key, value in category_update.model_dump(exclude_unset=True).items():
        setattr(category, key, value)
    session.add(category)
    session.commit()
    session.refresh(category)
    return category


@app.delete("/categories/{category_id}")
def delete_category(
    category_id: str,
    current_user: Annotated[models.User, Depends(security.get_current_user)],
    session: Session = Depends(get_session)
) -> dict:
    """Delete a category together with its menu items."""
    category = get_owned_category(session, current_user, category_id)
    items = session.exec(
        select(models.MenuItem).where(models.MenuItem.category_id == category.id)
    ).all()
    for item in items:
        session.delete(item)
    session.flush()
    session.delete(category)
    session.commit()
    logger.info(f"Deleted category {category_id} with {len(items)} menu item(s)")
    return {"status": "deleted", "id": category_id, "deleted_items": len(items)}


@app.post("/restaurants/{restaurant_id}/menu-items", status_code=status.HTTP_201_CREATED)
def create_menu_item(
    restaurant_id: str,
    item_data: models.MenuItemCreate,
    current_user: Annotated[models.User, Depends(security.get_current_user)],
    session: Session = Depends(get_session)
) -> dict:
    restaurant = security.get_owned_restaurant(session, current_user, restaurant_id)
    check_category(session, restaurant.id, item_data.category_id)
    item = models.MenuItem(restaurant_id=restaurant.id, **item_data.model_dump())
    session.add(item)
    session.commit()
    session.refresh(item)
    return item.model_dump(mode="json")


@app.put("/menu-items/{item_id}")
def update_menu_item(
    item_id: str,
    item_update: models.MenuItemUpdate,
    current_user: Annotated[models.User, Depends(security.get_current_user)],
    session: Session = Depends(get_session)
) -> dict:
    item = session.get(models.MenuItem, item_id)
    if not item:
        raise HTTPException(status_code=404, detail="Menu item not found")
    security.get_owned_restaurant(session, current_user, item.restaurant_id)

    changes = item_update.model_dump(exclude_unset=True)
    if "category_id" in changes:
        check_category(session, item.restaurant_id, changes["category_id"])
    for key, value in changes.items():
        setattr(item, key, value)
    session.add(item)
    session.commit()
    session.refresh(item)
    return item.model_dump(mode="json")


@app.get("/menu/{restaurant_id}")
def get_menu(
    restaurant_id: str,
    session: Session = Depends(get_session)
) -> dict:
    """Public endpoint - the menu guests order from."""
    restaurant = session.get(models.Restaurant, restaurant_id)
    if not restaurant:
        raise HTTPException(status_code=404, detail="Restaurant not found")

    categories = session.exec(
        select(models.MenuCategory)
        .where(
            models.MenuCategory.restaurant_id == restaurant_id,
            models.MenuCategory.is_visible == True,  # noqa: E712
        )
        .order_by(models.MenuCategory.position)
    ).all()
    visible_categories = {category.id for category in categories}

    items = session.exec(
        select(models.MenuItem)
        .where(
            models.MenuItem.restaurant_id == restaurant_id,
            models.MenuItem.is_visible == True,  # noqa: E712
        )
        .order_by(models.MenuItem.position)
    ).all()
    # Items of a hidden category are hidden with it
    items = [item for item in items if item.category_id is None or item.category_id in visible_categories]
    item_dicts = [item.model_dump(mode="json", exclude={"restaurant_id"}) for item in items]

    return {
        "restaurant": {
            "id": restaurant.id,
            "name": restaurant.name,
            "description": restaurant.description,
            "currency": restaurant.currency,
        },
        "menu_url": settings.public_menu_url(restaurant.id),
        "categories": [
            {
                "id": category.id,
                "name": category.name,
                "description": category.description,
                "items": [item for item in item_dicts if item["category_id"] == category.id],
            }
            for category in categories
        ],
        "items": item_dicts,
    }
