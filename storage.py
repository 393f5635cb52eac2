"""
Data access layer for the marketplace.

Every read and write goes through `Storage`. It keeps the data invariants
(unique pairs, favorite counters, cart merging, defaults) but performs no
authorization: callers pass the acting identity explicitly and are trusted.
"""
import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import create_document, get_documents, utcnow
from errors import ConflictError
from schemas import (
    CartItem,
    Category,
    Favorite,
    Order,
    Product,
    SellerApplication,
    UpsertUser,
    User,
)

logger = logging.getLogger(__name__)

USERS = "users"
CATEGORIES = "categories"
PRODUCTS = "products"
FAVORITES = "favorites"
CART_ITEMS = "cart_items"
ORDERS = "orders"
SELLER_APPLICATIONS = "seller_applications"

NO_ID = {"_id": 0}
NEWEST_FIRST = [("created_at", DESCENDING), ("id", DESCENDING)]

CENTS = Decimal("0.01")


def money(value) -> str:
    """Fixed two-place representation used for every stored amount."""
    return str(Decimal(str(value)).quantize(CENTS))


class Storage:
    def __init__(self, database: Database):
        self.db = database

    def ensure_indexes(self) -> None:
        self.db[USERS].create_index("id", unique=True)
        self.db[USERS].create_index("email", unique=True, sparse=True)
        self.db[CATEGORIES].create_index("name", unique=True)
        self.db[CATEGORIES].create_index("slug", unique=True)
        self.db[PRODUCTS].create_index("id", unique=True)
        self.db[FAVORITES].create_index([("user_id", ASCENDING), ("product_id", ASCENDING)], unique=True)
        self.db[CART_ITEMS].create_index([("user_id", ASCENDING), ("product_id", ASCENDING)], unique=True)
        self.db[ORDERS].create_index("user_id")
        self.db[ORDERS].create_index("seller_id")
        self.db[SELLER_APPLICATIONS].create_index("user_id")

    # ------------------------------------------------------------------ users
    def get_user(self, user_id: str) -> Optional[User]:
        doc = self.db[USERS].find_one({"id": user_id}, NO_ID)
        return User.model_validate(doc) if doc else None

    def upsert_user(self, data: UpsertUser) -> User:
        """Insert a user, or merge only the explicitly set fields into an existing one."""
        fields = data.model_dump(mode="json", exclude_unset=True)
        fields.pop("id", None)
        if fields.get("email") is None:
            fields.pop("email", None)
        now = utcnow()
        fields["updated_at"] = now

        on_insert = {"created_at": now}
        if "role" not in fields:
            on_insert["role"] = "buyer"
        if "is_approved" not in fields:
            on_insert["is_approved"] = False

        for attempt in range(2):
            try:
                doc = self.db[USERS].find_one_and_update(
                    {"id": data.id},
                    {"$set": fields, "$setOnInsert": on_insert},
                    upsert=True,
                    projection=NO_ID,
                    return_document=ReturnDocument.AFTER,
                )
                return User.model_validate(doc)
            except DuplicateKeyError as exc:
                key_pattern = (exc.details or {}).get("keyPattern") or {}
                if "email" in key_pattern or attempt:
                    raise ConflictError("Email already registered") from exc
                # A concurrent first upsert of the same id inserted the row; the retry updates it.
                logger.debug("user %s inserted concurrently, retrying as update", data.id)

    # ------------------------------------------------------------- categories
    def get_categories(self) -> List[Category]:
        docs = get_documents(self.db, CATEGORIES, sort=[("name", ASCENDING)])
        return [Category.model_validate(d) for d in docs]

    def count_categories(self) -> int:
        return self.db[CATEGORIES].count_documents({})

    def create_category(self, data: Dict[str, Any]) -> Category:
        if self.db[CATEGORIES].find_one({"$or": [{"name": data["name"]}, {"slug": data["slug"]}]}):
            raise ConflictError("Category name or slug already exists")
        try:
            doc = create_document(self.db, CATEGORIES, data)
        except DuplicateKeyError as exc:
            raise ConflictError("Category name or slug already exists") from exc
        return Category.model_validate(doc)

    # --------------------------------------------------------------- products
    def get_products(self, category_id: Optional[int] = None) -> List[Product]:
        flt: Dict[str, Any] = {"is_approved": True}
        if category_id is not None:
            flt["category_id"] = category_id
        return [Product.model_validate(d) for d in get_documents(self.db, PRODUCTS, flt, sort=NEWEST_FIRST)]

    def get_product(self, product_id: int) -> Optional[Product]:
        doc = self.db[PRODUCTS].find_one({"id": product_id}, NO_ID)
        return Product.model_validate(doc) if doc else None

    def get_recommended_products(self, limit: int = 4) -> List[Product]:
        if limit <= 0:
            return []
        docs = get_documents(
            self.db,
            PRODUCTS,
            {"is_approved": True},
            sort=[("favorite_count", DESCENDING), ("created_at", DESCENDING), ("id", DESCENDING)],
            limit=limit,
        )
        return [Product.model_validate(d) for d in docs]

    def get_seller_products(self, seller_id: str) -> List[Product]:
        docs = get_documents(self.db, PRODUCTS, {"seller_id": seller_id}, sort=NEWEST_FIRST)
        return [Product.model_validate(d) for d in docs]

    def get_pending_products(self) -> List[Product]:
        docs = get_documents(self.db, PRODUCTS, {"is_approved": False}, sort=NEWEST_FIRST)
        return [Product.model_validate(d) for d in docs]

    def create_product(self, data: Dict[str, Any]) -> Product:
        doc = dict(data)
        doc["price"] = money(doc["price"])
        doc.setdefault("is_approved", False)
        doc["favorite_count"] = 0
        doc["updated_at"] = utcnow()
        doc["created_at"] = doc["updated_at"]
        return Product.model_validate(create_document(self.db, PRODUCTS, doc))

    def update_product(self, product_id: int, data: Dict[str, Any]) -> Optional[Product]:
        """Merge the given fields; returns None when the product does not exist."""
        fields = {k: v for k, v in data.items() if k not in ("id", "favorite_count", "created_at")}
        if "price" in fields:
            fields["price"] = money(fields["price"])
        fields["updated_at"] = utcnow()
        doc = self.db[PRODUCTS].find_one_and_update(
            {"id": product_id},
            {"$set": fields},
            projection=NO_ID,
            return_document=ReturnDocument.AFTER,
        )
        return Product.model_validate(doc) if doc else None

    def delete_product(self, product_id: int) -> None:
        """Hard delete of the product row only.

        Favorites, cart rows and orders that reference it are left in place;
        reads that join through products skip the dangling rows.
        """
        self.db[PRODUCTS].delete_one({"id": product_id})

    # -------------------------------------------------------------- favorites
    def get_user_favorites(self, user_id: str) -> List[Product]:
        product_ids = [f["product_id"] for f in self.db[FAVORITES].find({"user_id": user_id}, {"product_id": 1})]
        if not product_ids:
            return []
        docs = get_documents(self.db, PRODUCTS, {"id": {"$in": product_ids}}, sort=NEWEST_FIRST)
        return [Product.model_validate(d) for d in docs]

    def add_to_favorites(self, user_id: str, product_id: int) -> Favorite:
        try:
            doc = create_document(self.db, FAVORITES, {"user_id": user_id, "product_id": product_id})
        except DuplicateKeyError as exc:
            raise ConflictError("Product already in favorites") from exc
        self.db[PRODUCTS].update_one({"id": product_id}, {"$inc": {"favorite_count": 1}})
        return Favorite.model_validate(doc)

    def remove_from_favorites(self, user_id: str, product_id: int) -> None:
        result = self.db[FAVORITES].delete_one({"user_id": user_id, "product_id": product_id})
        if result.deleted_count:
            self.db[PRODUCTS].update_one({"id": product_id}, {"$inc": {"favorite_count": -1}})

    def is_product_favorited(self, user_id: str, product_id: int) -> bool:
        return self.db[FAVORITES].find_one({"user_id": user_id, "product_id": product_id}) is not None

    # ------------------------------------------------------------------- cart
    def get_user_cart(self, user_id: str) -> List[CartItem]:
        docs = get_documents(self.db, CART_ITEMS, {"user_id": user_id}, sort=[("id", ASCENDING)])
        return [CartItem.model_validate(d) for d in docs]

    def get_cart_item(self, item_id: int) -> Optional[CartItem]:
        doc = self.db[CART_ITEMS].find_one({"id": item_id}, NO_ID)
        return CartItem.model_validate(doc) if doc else None

    def _increment_cart_item(self, user_id: str, product_id: int, quantity: int):
        return self.db[CART_ITEMS].find_one_and_update(
            {"user_id": user_id, "product_id": product_id},
            {"$inc": {"quantity": quantity}},
            projection=NO_ID,
            return_document=ReturnDocument.AFTER,
        )

    def add_to_cart(self, user_id: str, product_id: int, quantity: int = 1) -> CartItem:
        """Add a product to a cart, increasing the quantity of an existing row for the same product."""
        quantity = quantity or 1
        doc = self._increment_cart_item(user_id, product_id, quantity)
        if doc is None:
            try:
                doc = create_document(
                    self.db, CART_ITEMS, {"user_id": user_id, "product_id": product_id, "quantity": quantity}
                )
            except DuplicateKeyError:
                # Lost an insert race with a concurrent add of the same product.
                logger.debug("cart row for %s/%s appeared concurrently", user_id, product_id)
                doc = self._increment_cart_item(user_id, product_id, quantity)
        return CartItem.model_validate(doc)

    def update_cart_item(self, item_id: int, quantity: int) -> Optional[CartItem]:
        doc = self.db[CART_ITEMS].find_one_and_update(
            {"id": item_id},
            {"$set": {"quantity": quantity}},
            projection=NO_ID,
            return_document=ReturnDocument.AFTER,
        )
        return CartItem.model_validate(doc) if doc else None

    def remove_from_cart(self, item_id: int) -> None:
        self.db[CART_ITEMS].delete_one({"id": item_id})

    def clear_cart(self, user_id: str) -> None:
        self.db[CART_ITEMS].delete_many({"user_id": user_id})

    # ----------------------------------------------------------------- orders
    def get_user_orders(self, user_id: str) -> List[Order]:
        return [Order.model_validate(d) for d in get_documents(self.db, ORDERS, {"user_id": user_id}, sort=NEWEST_FIRST)]

    def get_seller_orders(self, seller_id: str) -> List[Order]:
        docs = get_documents(self.db, ORDERS, {"seller_id": seller_id}, sort=NEWEST_FIRST)
        return [Order.model_validate(d) for d in docs]

    def get_order(self, order_id: int) -> Optional[Order]:
        doc = self.db[ORDERS].find_one({"id": order_id}, NO_ID)
        return Order.model_validate(doc) if doc else None

    def create_order(self, data: Dict[str, Any]) -> Order:
        doc = dict(data)
        doc["total_price"] = money(doc["total_price"])
        doc["status"] = "pending"
        return Order.model_validate(create_document(self.db, ORDERS, doc))

    def update_order_status(self, order_id: int, status: str) -> Optional[Order]:
        doc = self.db[ORDERS].find_one_and_update(
            {"id": order_id},
            {"$set": {"status": status}},
            projection=NO_ID,
            return_document=ReturnDocument.AFTER,
        )
        return Order.model_validate(doc) if doc else None

    # ---------------------------------------------------- seller applications
    def get_seller_applications(self) -> List[SellerApplication]:
        return [SellerApplication.model_validate(d) for d in get_documents(self.db, SELLER_APPLICATIONS, sort=NEWEST_FIRST)]

    def create_seller_application(self, data: Dict[str, Any]) -> SellerApplication:
        doc = dict(data)
        doc["status"] = "pending"
        return SellerApplication.model_validate(create_document(self.db, SELLER_APPLICATIONS, doc))

    def update_seller_application_status(self, app_id: int, status: str) -> Optional[SellerApplication]:
        doc = self.db[SELLER_APPLICATIONS].find_one_and_update(
            {"id": app_id},
            {"$set": {"status": status}},
            projection=NO_ID,
            return_document=ReturnDocument.AFTER,
        )
        return SellerApplication.model_validate(doc) if doc else None

    def get_user_seller_application(self, user_id: str) -> Optional[SellerApplication]:
        docs = get_documents(self.db, SELLER_APPLICATIONS, {"user_id": user_id}, sort=NEWEST_FIRST, limit=1)
        return SellerApplication.model_validate(docs[0]) if docs else None
