"""
Database Schemas for the Marketplace

Each Pydantic model below maps to a MongoDB collection (User -> "users",
CartItem -> "cart_items", ...). Documents are stored with snake_case field
names; the API speaks camelCase through the alias generator on MarketplaceModel.

The *In / *Update models are request bodies and are validated at the API
boundary before anything reaches storage.
"""
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel


class MarketplaceModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Role(str, Enum):
    BUYER = "buyer"
    SELLER = "seller"
    ADMIN = "admin"


OrderStatus = Literal["pending", "confirmed", "shipped", "delivered"]
ApplicationStatus = Literal["pending", "approved", "rejected"]

Price = Annotated[Decimal, Field(ge=0, max_digits=10, decimal_places=2)]

# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------
class User(MarketplaceModel):
    id: str = Field(..., description="Identity issued by the auth provider")
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    profile_image_url: Optional[str] = None
    role: Role = Role.BUYER
    is_approved: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class UpsertUser(MarketplaceModel):
    """Only the fields explicitly set are written on conflict."""
    id: str
    email: Optional[EmailStr] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    profile_image_url: Optional[str] = None
    role: Optional[Role] = None
    is_approved: Optional[bool] = None


class UserProfileIn(MarketplaceModel):
    email: Optional[EmailStr] = None
    first_name: Optional[str] = Field(None, max_length=120)
    last_name: Optional[str] = Field(None, max_length=120)
    profile_image_url: Optional[str] = None

# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------
class CategoryIn(MarketplaceModel):
    name: str = Field(..., min_length=1)
    slug: str = Field(..., min_length=1, pattern=r"^[a-z0-9-]+$")
    color: str = Field(..., description="CSS color, e.g. #3B82F6")
    icon: str


class Category(CategoryIn):
    id: int


class ProductIn(MarketplaceModel):
    name: str = Field(..., min_length=1)
    description: str
    price: Price
    image_url: str
    category_id: int


class ProductUpdate(MarketplaceModel):
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    price: Optional[Price] = None
    image_url: Optional[str] = None
    category_id: Optional[int] = None


class ProductApprovalUpdate(MarketplaceModel):
    is_approved: bool


class Product(MarketplaceModel):
    id: int
    name: str
    description: str
    price: Decimal
    image_url: str
    seller_id: str
    category_id: int
    is_approved: bool = False
    favorite_count: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

# ---------------------------------------------------------------------------
# Favorites and cart
# ---------------------------------------------------------------------------
class FavoriteIn(MarketplaceModel):
    product_id: int


class Favorite(MarketplaceModel):
    id: int
    user_id: str
    product_id: int
    created_at: Optional[datetime] = None


class FavoriteStatus(MarketplaceModel):
    is_favorited: bool


class CartItemIn(MarketplaceModel):
    product_id: int
    quantity: int = Field(1, ge=1)


class CartItemUpdate(MarketplaceModel):
    quantity: int = Field(..., ge=1)


class CartItem(MarketplaceModel):
    id: int
    user_id: str
    product_id: int
    quantity: int = 1
    created_at: Optional[datetime] = None

# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------
class OrderIn(MarketplaceModel):
    product_id: int
    quantity: int = Field(..., ge=1)
    total_price: Price
    seller_id: Optional[str] = Field(None, description="Must match the product's seller when given")


class OrderStatusUpdate(MarketplaceModel):
    status: OrderStatus


class Order(MarketplaceModel):
    id: int
    user_id: str
    product_id: int
    seller_id: str
    quantity: int
    total_price: Decimal
    status: str = "pending"
    created_at: Optional[datetime] = None

# ---------------------------------------------------------------------------
# Seller applications
# ---------------------------------------------------------------------------
class SellerApplicationIn(MarketplaceModel):
    email: EmailStr
    phone: str = Field(..., min_length=3, description="Contact number, WhatsApp preferred")
    payment_info: str = Field(..., min_length=1)


class ApplicationStatusUpdate(MarketplaceModel):
    status: ApplicationStatus


class SellerApplication(MarketplaceModel):
    id: int
    user_id: str
    email: str
    phone: str
    payment_info: str
    status: str = "pending"
    created_at: Optional[datetime] = None


class Message(MarketplaceModel):
    message: str
