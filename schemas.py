"""
Database Schemas

MongoDB collection schemas defined as Pydantic models.
Each collection model notes its collection name in its docstring.

This project stores handmade rugs, guest carts keyed by session, checkout
orders paid at location, and per-country shipping fee rules.
"""
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field
from pydantic import ValidationError as PydanticValidationError

OrderStatusValue = Literal["pending", "confirm", "failed", "cancelled", "completed", "delivered", "refund"]
PaymentMethodValue = Literal["online", "pay_at_location"]


def describe_error(exc: PydanticValidationError) -> str:
    """First violated rule as "Validation error: field: message"."""
    first = exc.errors()[0]
    field = ".".join(str(part) for part in first.get("loc", ()))
    return f"Validation error: {field}: {first['msg']}" if field else f"Validation error: {first['msg']}"


# Collections


class Rug(BaseModel):
    """
    Collection: "rug"
    Catalog entry. Prices are whole rupees.
    """
    title: str = Field(..., max_length=200, description="Rug title")
    brand: str = Field(..., max_length=100, description="Brand name")
    description: str = Field("", max_length=2000, description="Rug description")
    images: List[str] = Field(..., min_length=1, max_length=5, description="Image URLs")
    category: str = Field(..., max_length=100, description="Primary category")
    originalPrice: int = Field(..., ge=0, description="List price")
    salePrice: int = Field(..., ge=0, description="Derived from originalPrice and discountPercent")
    discountPercent: float = Field(0, ge=0, le=100)
    colors: List[str] = Field(default_factory=list, description="Hex codes or colour names")
    sizes: List[str] = Field(default_factory=list, description='e.g. ["5x8", "8x10"]')
    isOnSale: bool = False
    isBestSeller: bool = False
    stock: int = Field(0, ge=0, description="Units available")
    createdBy: Optional[str] = Field(None, description="Admin user id")
    isActive: bool = True


# Embedded in cart (not a collection on its own)
class CartItem(BaseModel):
    id: str = Field(..., description="cart_item_<ms>_<random>")
    productId: str
    quantity: int = Field(..., ge=1)
    size: Optional[str] = Field(None, max_length=100)


class Cart(BaseModel):
    """
    Collection: "cart"
    One cart per session id.
    """
    sessionId: str
    products: List[CartItem] = Field(default_factory=list)
    totalPrice: int = Field(0, ge=0)


# Embedded in order: frozen at checkout time
class OrderItem(BaseModel):
    productId: str
    title: str = Field(..., max_length=200)
    image: str = Field("", max_length=500)
    size: Optional[str] = Field(None, max_length=100)
    quantity: int = Field(..., ge=1)
    unitPrice: int = Field(..., ge=0, description="Effective price at order time")
    lineTotal: int = Field(..., ge=0, description="unitPrice * quantity")


class Order(BaseModel):
    """
    Collection: "order"
    Guest checkout orders. totalPrice = sum(lineTotal) + shippingFee.
    """
    email: EmailStr
    username: str
    phoneNumber: Optional[str] = Field(None, max_length=20)
    address: Optional[str] = Field(None, max_length=500)
    country: Optional[str] = Field(None, max_length=100)
    city: Optional[str] = Field(None, max_length=100)
    postalCode: Optional[str] = Field(None, max_length=20)
    items: List[OrderItem]
    totalPrice: int = Field(..., ge=0)
    shippingFee: int = Field(0, ge=0)
    status: OrderStatusValue = "confirm"
    paymentMethod: PaymentMethodValue = "pay_at_location"
    currency: str = Field("PKR", min_length=3, max_length=3)
    cancelReason: Optional[str] = Field(None, max_length=500)
    trackingNumber: Optional[str] = Field(None, max_length=100)
    stockCommitted: bool = False
    stockApplied: List[int] = Field(default_factory=list, description="Indexes of items whose stock was decremented")


class ShippingFee(BaseModel):
    """
    Collection: "shipping_fee"
    One rule per country.
    """
    freeShippingThreshold: int = Field(10000, ge=0)
    shippingFee: int = Field(0, ge=0)
    country: str = Field("Pakistan", max_length=100)
    isActive: bool = True


class RevokedToken(BaseModel):
    """
    Collection: "revoked_token"
    Logged-out bearer tokens; removed by a TTL index once expired.
    """
    token: str
    expiresAt: datetime


# Request bodies
# Range and format rules are checked by the services so each violation
# gets its own message.

class AddToCartRequest(BaseModel):
    productId: str
    quantity: int
    size: Optional[str] = None


class UpdateCartItemRequest(BaseModel):
    quantity: int


class OrderItemInput(BaseModel):
    productId: str
    quantity: int
    size: Optional[str] = None


class CreateOrderRequest(BaseModel):
    email: str
    username: str
    phoneNumber: Optional[str] = None
    items: List[OrderItemInput] = Field(default_factory=list)
    address: Optional[str] = None
    country: Optional[str] = None
    city: Optional[str] = None
    postalCode: Optional[str] = None


class CancelOrderRequest(BaseModel):
    cancelReason: Optional[str] = None


class UpdateOrderStatusRequest(BaseModel):
    status: Optional[str] = None
    cancelReason: Optional[str] = None
    trackingNumber: Optional[str] = None


class ShippingFeeUpsertRequest(BaseModel):
    freeShippingThreshold: int
    shippingFee: int
    country: str
    isActive: Optional[bool] = None


class RugCreateRequest(BaseModel):
    title: str
    brand: str
    description: str = ""
    images: List[str]
    category: str
    originalPrice: int
    discountPercent: float = 0
    colors: List[str] = Field(default_factory=list)
    sizes: List[str] = Field(default_factory=list)
    isOnSale: bool = False
    isBestSeller: bool = False
    stock: int = 0
    isActive: bool = True


class RugUpdateRequest(BaseModel):
    title: Optional[str] = None
    brand: Optional[str] = None
    description: Optional[str] = None
    images: Optional[List[str]] = None
    category: Optional[str] = None
    originalPrice: Optional[int] = None
    discountPercent: Optional[float] = None
    colors: Optional[List[str]] = None
    sizes: Optional[List[str]] = None
    isOnSale: Optional[bool] = None
    isBestSeller: Optional[bool] = None
    stock: Optional[int] = None
    isActive: Optional[bool] = None
