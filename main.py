import os
import logging
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from auth import (
    Capability,
    can_manage,
    get_storage,
    has_capability,
    require_capability,
    require_identity,
)
from database import db
from errors import ConflictError, Forbidden, MarketplaceError, NotFound, ValidationFailed
from schemas import (
    ApplicationStatusUpdate,
    CartItem,
    CartItemIn,
    CartItemUpdate,
    Category,
    CategoryIn,
    Favorite,
    FavoriteIn,
    FavoriteStatus,
    Message,
    Order,
    OrderIn,
    OrderStatusUpdate,
    Product,
    ProductApprovalUpdate,
    ProductIn,
    ProductUpdate,
    Role,
    SellerApplication,
    SellerApplicationIn,
    UpsertUser,
    User,
    UserProfileIn,
)
from storage import Storage

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

API_PREFIX = os.getenv("API_PREFIX", "/api")

DEFAULT_CATEGORIES = [
    {"name": "Men", "slug": "men", "color": "#3B82F6", "icon": "fas fa-male"},
    {"name": "Women", "slug": "women", "color": "#EC4899", "icon": "fas fa-female"},
    {"name": "Gadgets", "slug": "gadgets", "color": "#94A3B8", "icon": "fas fa-mobile-alt"},
    {"name": "Clothing", "slug": "clothing", "color": "#F5E6D3", "icon": "fas fa-tshirt"},
    {"name": "Jewelry", "slug": "jewelry", "color": "#D4AF37", "icon": "fas fa-gem"},
    {"name": "Gifts", "slug": "gifts", "color": "#8B5CF6", "icon": "fas fa-gift"},
]


def initialize_categories(storage: Storage) -> None:
    """Seed the default categories when the catalog has none."""
    if storage.count_categories() > 0:
        return
    seeded = 0
    for category in DEFAULT_CATEGORIES:
        try:
            storage.create_category(dict(category))
        except ConflictError:
            logger.warning("Category %s already seeded by another worker", category["slug"])
            continue
        seeded += 1
    logger.info("Seeded %d default categories", seeded)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if getattr(app.state, "storage", None) is None and db is not None:
        app.state.storage = Storage(db)
    storage = getattr(app.state, "storage", None)
    if storage is None:
        logger.warning("DATABASE_URL / DATABASE_NAME not set; API will answer with errors")
    else:
        storage.ensure_indexes()
        initialize_categories(storage)
    yield


app = FastAPI(title="Marketplace API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

api = APIRouter(prefix=API_PREFIX)


# ---------------------------- Error responses ------------------------------
@app.exception_handler(MarketplaceError)
async def marketplace_error_handler(request: Request, exc: MarketplaceError):
    return JSONResponse(status_code=exc.status_code, content={"message": exc.message, "kind": exc.kind})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = [{"loc": list(e.get("loc", ())), "msg": e.get("msg"), "type": e.get("type")} for e in exc.errors()]
    return JSONResponse(
        status_code=ValidationFailed.status_code,
        content={"message": ValidationFailed.default_message, "kind": ValidationFailed.kind, "errors": errors},
    )


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={"message": "Internal server error", "kind": "internal_error"})


# ---------------------------- Root & Health --------------------------------
@app.get("/")
def read_root():
    return {"message": "Marketplace backend running"}


@app.get("/test")
def test_database(request: Request):
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": os.getenv("DATABASE_NAME") or "-",
        "connection_status": "Not Connected",
        "collections": [],
    }
    storage = getattr(request.app.state, "storage", None)
    if storage is not None:
        response["database"] = "✅ Available"
        try:
            response["collections"] = storage.db.list_collection_names()[:10]
            response["connection_status"] = "Connected"
            response["database"] = "✅ Connected & Working"
        except Exception as e:
            response["database"] = f"⚠️ Connected but Error: {str(e)[:80]}"
    return response


# ------------------------------- Auth --------------------------------------
@api.get("/auth/user", response_model=User)
def get_auth_user(user_id: str = Depends(require_identity), storage: Storage = Depends(get_storage)):
    user = storage.get_user(user_id)
    if not user:
        raise NotFound("User not found")
    return user


@api.post("/auth/user", response_model=User)
def sync_auth_user(
    profile: UserProfileIn,
    user_id: str = Depends(require_identity),
    storage: Storage = Depends(get_storage),
):
    # Profile sync never carries role or approval; those change only through applications.
    return storage.upsert_user(UpsertUser(id=user_id, **profile.model_dump(exclude_unset=True)))


# ---------------------------- Public Catalog -------------------------------
@api.get("/categories", response_model=List[Category])
def list_categories(storage: Storage = Depends(get_storage)):
    return storage.get_categories()


@api.post("/categories", response_model=Category)
def create_category(
    category: CategoryIn,
    user_id: str = Depends(require_identity),
    storage: Storage = Depends(get_storage),
):
    require_capability(storage, user_id, Capability.MODERATE, "Admin access required")
    return storage.create_category(category.model_dump())


@api.get("/products", response_model=List[Product])
def list_products(
    category_id: Optional[int] = Query(None, alias="categoryId"),
    storage: Storage = Depends(get_storage),
):
    return storage.get_products(category_id)


@api.get("/products/recommended", response_model=List[Product])
def recommended_products(limit: int = Query(4, ge=1, le=100), storage: Storage = Depends(get_storage)):
    return storage.get_recommended_products(limit)


@api.get("/products/{product_id}", response_model=Product)
def get_product(product_id: int, storage: Storage = Depends(get_storage)):
    product = storage.get_product(product_id)
    if not product:
        raise NotFound("Product not found")
    return product


# ---------------------------- Seller endpoints -----------------------------
@api.post("/products", response_model=Product)
def create_product(
    product: ProductIn,
    user_id: str = Depends(require_identity),
    storage: Storage = Depends(get_storage),
):
    user = require_capability(storage, user_id, Capability.SELL, "Only approved sellers can create products")
    data = product.model_dump()
    data["seller_id"] = user_id
    data["is_approved"] = has_capability(user.role, Capability.MODERATE)
    created = storage.create_product(data)
    logger.info("Product %s created by %s (approved=%s)", created.id, user_id, created.is_approved)
    return created


def _managed_product(storage: Storage, product_id: int, user_id: str) -> Product:
    product = storage.get_product(product_id)
    if not product:
        raise NotFound("Product not found")
    if not can_manage(storage.get_user(user_id), product.seller_id):
        raise Forbidden("You can only manage your own products")
    return product


@api.patch("/products/{product_id}", response_model=Product)
def update_product(
    product_id: int,
    changes: ProductUpdate,
    user_id: str = Depends(require_identity),
    storage: Storage = Depends(get_storage),
):
    _managed_product(storage, product_id, user_id)
    updated = storage.update_product(product_id, changes.model_dump(exclude_unset=True, exclude_none=True))
    if not updated:
        raise NotFound("Product not found")
    return updated


@api.delete("/products/{product_id}", response_model=Message)
def delete_product(product_id: int, user_id: str = Depends(require_identity), storage: Storage = Depends(get_storage)):
    _managed_product(storage, product_id, user_id)
    storage.delete_product(product_id)
    logger.info("Product %s deleted by %s", product_id, user_id)
    return Message(message="Product deleted")


@api.get("/seller/products", response_model=List[Product])
def seller_products(user_id: str = Depends(require_identity), storage: Storage = Depends(get_storage)):
    require_capability(storage, user_id, Capability.SELL, "Seller access required")
    return storage.get_seller_products(user_id)


@api.get("/seller/orders", response_model=List[Order])
def seller_orders(user_id: str = Depends(require_identity), storage: Storage = Depends(get_storage)):
    require_capability(storage, user_id, Capability.SELL, "Seller access required")
    return storage.get_seller_orders(user_id)


# ------------------------------ Favorites ----------------------------------
def _existing_product(storage: Storage, product_id: int) -> Product:
    product = storage.get_product(product_id)
    if not product:
        raise NotFound("Product not found")
    return product


@api.get("/favorites", response_model=List[Product])
def list_favorites(user_id: str = Depends(require_identity), storage: Storage = Depends(get_storage)):
    return storage.get_user_favorites(user_id)


@api.get("/favorites/{product_id}", response_model=FavoriteStatus)
def favorite_status(product_id: int, user_id: str = Depends(require_identity), storage: Storage = Depends(get_storage)):
    return FavoriteStatus(is_favorited=storage.is_product_favorited(user_id, product_id))


@api.post("/favorites", response_model=Favorite)
def add_favorite(body: FavoriteIn, user_id: str = Depends(require_identity), storage: Storage = Depends(get_storage)):
    _existing_product(storage, body.product_id)
    return storage.add_to_favorites(user_id, body.product_id)


@api.delete("/favorites/{product_id}", response_model=Message)
def remove_favorite(product_id: int, user_id: str = Depends(require_identity), storage: Storage = Depends(get_storage)):
    storage.remove_from_favorites(user_id, product_id)
    return Message(message="Removed from favorites")


# -------------------------------- Cart -------------------------------------
def _own_cart_item(storage: Storage, item_id: int, user_id: str) -> CartItem:
    item = storage.get_cart_item(item_id)
    if not item:
        raise NotFound("Cart item not found")
    if item.user_id != user_id:
        raise Forbidden("Cart item belongs to another user")
    return item


@api.get("/cart", response_model=List[CartItem])
def get_cart(user_id: str = Depends(require_identity), storage: Storage = Depends(get_storage)):
    return storage.get_user_cart(user_id)


@api.post("/cart", response_model=CartItem)
def add_to_cart(body: CartItemIn, user_id: str = Depends(require_identity), storage: Storage = Depends(get_storage)):
    _existing_product(storage, body.product_id)
    return storage.add_to_cart(user_id, body.product_id, body.quantity)


@api.patch("/cart/{item_id}", response_model=CartItem)
def update_cart_item(
    item_id: int,
    body: CartItemUpdate,
    user_id: str = Depends(require_identity),
    storage: Storage = Depends(get_storage),
):
    _own_cart_item(storage, item_id, user_id)
    updated = storage.update_cart_item(item_id, body.quantity)
    if not updated:
        raise NotFound("Cart item not found")
    return updated


@api.delete("/cart/{item_id}", response_model=Message)
def remove_from_cart(item_id: int, user_id: str = Depends(require_identity), storage: Storage = Depends(get_storage)):
    _own_cart_item(storage, item_id, user_id)
    storage.remove_from_cart(item_id)
    return Message(message="Removed from cart")


@api.delete("/cart", response_model=Message)
def clear_cart(user_id: str = Depends(require_identity), storage: Storage = Depends(get_storage)):
    storage.clear_cart(user_id)
    return Message(message="Cart cleared")


# ------------------------------- Orders ------------------------------------
@api.get("/orders", response_model=List[Order])
def list_orders(user_id: str = Depends(require_identity), storage: Storage = Depends(get_storage)):
    return storage.get_user_orders(user_id)


@api.post("/orders", response_model=Order)
def create_order(body: OrderIn, user_id: str = Depends(require_identity), storage: Storage = Depends(get_storage)):
    product = _existing_product(storage, body.product_id)
    if body.seller_id is not None and body.seller_id != product.seller_id:
        raise ValidationFailed("sellerId does not match the product's seller")
    order = storage.create_order({
        "user_id": user_id,
        "product_id": product.id,
        "seller_id": product.seller_id,
        "quantity": body.quantity,
        "total_price": body.total_price,
    })
    logger.info("Order %s placed by %s for product %s", order.id, user_id, product.id)
    return order


@api.patch("/orders/{order_id}/status", response_model=Order)
def update_order_status(
    order_id: int,
    body: OrderStatusUpdate,
    user_id: str = Depends(require_identity),
    storage: Storage = Depends(get_storage),
):
    order = storage.get_order(order_id)
    if not order:
        raise NotFound("Order not found")
    if not can_manage(storage.get_user(user_id), order.seller_id):
        raise Forbidden("Only the handling seller can update this order")
    updated = storage.update_order_status(order_id, body.status)
    if not updated:
        raise NotFound("Order not found")
    return updated


# ------------------------- Seller applications -----------------------------
@api.post("/seller-applications", response_model=SellerApplication)
def submit_seller_application(
    body: SellerApplicationIn,
    user_id: str = Depends(require_identity),
    storage: Storage = Depends(get_storage),
):
    data = body.model_dump(mode="json")
    data["user_id"] = user_id
    application = storage.create_seller_application(data)
    logger.info("Seller application %s submitted by %s", application.id, user_id)
    return application


@api.get("/seller-applications/me", response_model=Optional[SellerApplication])
def my_seller_application(user_id: str = Depends(require_identity), storage: Storage = Depends(get_storage)):
    return storage.get_user_seller_application(user_id)


# ------------------------------- Admin -------------------------------------
@api.get("/admin/applications", response_model=List[SellerApplication])
def list_applications(user_id: str = Depends(require_identity), storage: Storage = Depends(get_storage)):
    require_capability(storage, user_id, Capability.MODERATE, "Admin access required")
    return storage.get_seller_applications()


@api.patch("/admin/applications/{app_id}", response_model=SellerApplication)
def decide_application(
    app_id: int,
    body: ApplicationStatusUpdate,
    user_id: str = Depends(require_identity),
    storage: Storage = Depends(get_storage),
):
    require_capability(storage, user_id, Capability.MODERATE, "Admin access required")
    application = storage.update_seller_application_status(app_id, body.status)
    if not application:
        raise NotFound("Application not found")
    if body.status == "approved":
        storage.upsert_user(UpsertUser(id=application.user_id, role=Role.SELLER, is_approved=True))
        logger.info("User %s promoted to seller by %s", application.user_id, user_id)
    return application


@api.get("/admin/products/pending", response_model=List[Product])
def pending_products(user_id: str = Depends(require_identity), storage: Storage = Depends(get_storage)):
    require_capability(storage, user_id, Capability.MODERATE, "Admin access required")
    return storage.get_pending_products()


@api.patch("/admin/products/{product_id}", response_model=Product)
def set_product_approval(
    product_id: int,
    body: ProductApprovalUpdate,
    user_id: str = Depends(require_identity),
    storage: Storage = Depends(get_storage),
):
    require_capability(storage, user_id, Capability.MODERATE, "Admin access required")
    updated = storage.update_product(product_id, {"is_approved": body.is_approved})
    if not updated:
        raise NotFound("Product not found")
    return updated


app.include_router(api)


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
