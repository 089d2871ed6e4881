"""
Checkout and order management

Orders snapshot title, image, size and price of every line at checkout and
are never repriced afterwards. Stock is taken with one atomic $inc per line
after the order is stored. The order carries a small progress log
(stockApplied / stockCommitted) so a checkout that dies halfway can have its
decrements reversed by recover_uncommitted_orders().
"""
import logging
import math
import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from pymongo import DESCENDING
from pymongo.database import Database

import catalog
from config import get_settings
from database import ORDERS, as_utc, create_document, parse_object_id, persistence_guard, utcnow
from errors import InsufficientStockError, NotFoundError, ValidationError
from order_status import (
    ORDER_STATUS_VALUES,
    PAYMENT_METHOD_VALUES,
    OrderStatus,
    PaymentMethod,
    validate_customer_cancel,
    validate_transition,
)
from pricing import effective_price
from schemas import CreateOrderRequest, Order, OrderItem, PydanticValidationError, describe_error
from shipping import calculate_shipping_fee, normalize_country

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MAX_PAGE_SIZE = 100
DEFAULT_PAGE_SIZE = 20


def normalize_email(email: Optional[str], required_message: str = "Email is required") -> str:
    if not email or not email.strip():
        raise ValidationError(required_message)
    email = email.strip().lower()
    if not EMAIL_RE.match(email):
        raise ValidationError("Invalid email format")
    return email


def _strip(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    return value.strip() or None


def _order_id(order_id: str):
    oid = parse_object_id(order_id)
    if oid is None:
        raise ValidationError("Invalid order ID")
    return oid


# ---------------------- Formatting ----------------------

def format_items(order: dict) -> List[dict]:
    return [
        {
            "productId": str(item["productId"]),
            "title": item.get("title"),
            "image": item.get("image"),
            "size": item.get("size") or None,
            "quantity": item.get("quantity"),
            "unitPrice": item.get("unitPrice"),
            "lineTotal": item.get("lineTotal"),
        }
        for item in order.get("items") or []
    ]


def format_created_order(order: dict) -> dict:
    return {
        "id": str(order["_id"]),
        "email": order["email"],
        "username": order["username"],
        "phoneNumber": order.get("phoneNumber"),
        "items": format_items(order),
        "status": order["status"],
        "paymentMethod": order["paymentMethod"],
        "totalPrice": order["totalPrice"],
        "shippingFee": order["shippingFee"],
        "currency": order["currency"],
        "createdAt": order.get("createdAt"),
    }


def format_customer_order(order: dict) -> dict:
    return {
        "id": str(order["_id"]),
        "items": format_items(order),
        "totalPrice": order.get("totalPrice"),
        "shippingFee": order.get("shippingFee", 0),
        "status": order.get("status"),
        "trackingNumber": order.get("trackingNumber"),
        "cancelReason": order.get("cancelReason"),
        "paymentMethod": order.get("paymentMethod"),
        "currency": order.get("currency"),
        "createdAt": order.get("createdAt"),
    }


def format_admin_order(order: dict) -> dict:
    return {
        "id": str(order["_id"]),
        "status": order.get("status"),
        "paymentMethod": order.get("paymentMethod"),
        "totalPrice": order.get("totalPrice"),
        "shippingFee": order.get("shippingFee", 0),
        "currency": order.get("currency"),
        "cancelReason": order.get("cancelReason"),
        "trackingNumber": order.get("trackingNumber"),
        "stockCommitted": order.get("stockCommitted", True),
        "createdAt": order.get("createdAt"),
        "updatedAt": order.get("updatedAt"),
        "user": {
            "email": order.get("email"),
            "username": order.get("username"),
            "phoneNumber": order.get("phoneNumber"),
            "address": order.get("address"),
            "country": order.get("country"),
            "city": order.get("city"),
            "postalCode": order.get("postalCode"),
        },
        "items": format_items(order),
    }


def format_status_change(order: dict) -> dict:
    return {
        "id": str(order["_id"]),
        "status": order.get("status"),
        "cancelReason": order.get("cancelReason"),
        "trackingNumber": order.get("trackingNumber"),
        "updatedAt": order.get("updatedAt"),
    }


# ---------------------- Admin listing ----------------------

@dataclass
class OrderFilter:
    email: Optional[str] = None
    status: Optional[str] = None
    payment_method: Optional[str] = None
    page: int = 1
    limit: int = DEFAULT_PAGE_SIZE


def build_order_query(criteria: OrderFilter) -> Dict[str, Any]:
    query: Dict[str, Any] = {}
    if criteria.email:
        if not EMAIL_RE.match(criteria.email.strip()):
            raise ValidationError("Invalid email filter provided")
        query["email"] = criteria.email.strip().lower()
    if criteria.status:
        if criteria.status not in ORDER_STATUS_VALUES:
            raise ValidationError("Invalid status filter provided")
        query["status"] = criteria.status
    if criteria.payment_method:
        if criteria.payment_method not in PAYMENT_METHOD_VALUES:
            raise ValidationError("Invalid payment method filter provided")
        query["paymentMethod"] = criteria.payment_method
    return query


class OrderService:
    def __init__(self, db: Database):
        self.db = db
        self.orders = db[ORDERS]

    # -- checkout --

    def create(self, body: CreateOrderRequest) -> dict:
        if not body.email or not body.username or not body.username.strip():
            raise ValidationError("Email and username are required")
        email = normalize_email(body.email)

        if not body.items:
            raise ValidationError("At least one product in items[] is required to create an order")
        for item in body.items:
            if parse_object_id(item.productId) is None:
                raise ValidationError("Invalid product ID in items")
            if item.quantity < 1:
                raise ValidationError("Quantity must be at least 1 for all items")

        products = catalog.find_many(self.db, (item.productId for item in body.items))

        order_items: List[OrderItem] = []
        subtotal = 0
        for item in body.items:
            product = products.get(str(parse_object_id(item.productId)))
            if not product:
                raise NotFoundError(f"Product not found for ID: {item.productId}")
            title = product.get("title", "")
            if not catalog.is_available(product):
                raise ValidationError(f"Product is not available: {title}")
            if not catalog.has_valid_stock(product):
                raise ValidationError(f"Product stock information is not available: {title}")
            if item.quantity > product["stock"]:
                raise InsufficientStockError(product["stock"], title)

            size = catalog.normalize_size(item.size)
            if size:
                sizes = product.get("sizes") or []
                if not sizes:
                    raise ValidationError(f'Selected product "{title}" does not have size options')
                if size not in sizes:
                    raise ValidationError(f'Invalid size "{size}" for product "{title}"')

            unit_price = effective_price(product)
            line_total = unit_price * item.quantity
            subtotal += line_total
            images = product.get("images") or []
            try:
                order_items.append(OrderItem(
                    productId=str(product["_id"]),
                    title=title,
                    image=images[0] if images else "",
                    size=size,
                    quantity=item.quantity,
                    unitPrice=unit_price,
                    lineTotal=line_total,
                ))
            except PydanticValidationError as e:
                raise ValidationError(describe_error(e)) from e

        country = normalize_country(body.country)
        shipping_fee = calculate_shipping_fee(self.db, subtotal, country)

        try:
            order = Order(
                email=email,
                username=body.username.strip(),
                phoneNumber=_strip(body.phoneNumber),
                address=_strip(body.address),
                country=country,
                city=_strip(body.city),
                postalCode=_strip(body.postalCode),
                items=order_items,
                totalPrice=subtotal + shipping_fee,
                shippingFee=shipping_fee,
                status=OrderStatus.CONFIRM.value,
                paymentMethod=PaymentMethod.PAY_AT_LOCATION.value,
                currency=get_settings().store_currency,
            )
        except PydanticValidationError as e:
            raise ValidationError(describe_error(e)) from e
        doc = order.model_dump(exclude_none=True)
        for line in doc["items"]:
            line["productId"] = parse_object_id(line["productId"])

        with persistence_guard("Failed to create order"):
            order_oid = parse_object_id(create_document(self.db, ORDERS, doc))
            self._commit_stock(order_oid, doc["items"])
            saved = self.orders.find_one({"_id": order_oid})

        logger.info("Order %s created for %s: %d item(s), total %d", order_oid, email, len(order_items),
                    saved["totalPrice"])
        return saved

    def _commit_stock(self, order_oid, items: List[dict]) -> None:
        for index, line in enumerate(items):
            catalog.decrement_stock(self.db, line["productId"], line["quantity"])
            self.orders.update_one({"_id": order_oid}, {"$addToSet": {"stockApplied": index}})
        self.orders.update_one({"_id": order_oid}, {"$set": {"stockCommitted": True}})

    def recover_uncommitted_orders(self, older_than: Optional[timedelta] = None) -> List[str]:
        """
        Undo the stock taken by checkouts that never finished.

        An order still marked stockCommitted=false after the grace period gets
        its applied decrements added back and is marked failed.
        """
        if older_than is None:
            older_than = timedelta(seconds=get_settings().stock_commit_grace_seconds)
        cutoff = utcnow() - older_than
        recovered = []
        with persistence_guard("Failed to recover uncommitted orders"):
            for order in self.orders.find({"stockCommitted": False}):
                created: Optional[datetime] = order.get("createdAt")
                if created is not None and as_utc(created) > cutoff:
                    continue
                applied = set(order.get("stockApplied") or [])
                for index, line in enumerate(order.get("items") or []):
                    if index in applied:
                        catalog.increment_stock(self.db, line["productId"], line["quantity"])
                self.orders.update_one(
                    {"_id": order["_id"]},
                    {
                        "$set": {
                            "stockCommitted": True,
                            "stockApplied": [],
                            "status": OrderStatus.FAILED.value,
                            "updatedAt": utcnow(),
                        }
                    },
                )
                logger.warning("Order %s never committed stock; restored %d line(s) and marked failed",
                               order["_id"], len(applied))
                recovered.append(str(order["_id"]))
        return recovered

    # -- queries --

    def list_for_email(self, email: Optional[str]) -> List[dict]:
        email = normalize_email(email)
        return list(self.orders.find({"email": email}).sort("createdAt", DESCENDING))

    def list_admin(self, criteria: OrderFilter) -> Tuple[List[dict], dict]:
        query = build_order_query(criteria)
        page = criteria.page if criteria.page and criteria.page > 0 else 1
        limit = criteria.limit if criteria.limit and 0 < criteria.limit <= MAX_PAGE_SIZE else DEFAULT_PAGE_SIZE
        docs = list(
            self.orders.find(query).sort("createdAt", DESCENDING).skip((page - 1) * limit).limit(limit)
        )
        total = self.orders.count_documents(query)
        return docs, {"page": page, "limit": limit, "total": total, "pages": math.ceil(total / limit)}

    def get(self, order_id: str) -> dict:
        order = self.orders.find_one({"_id": _order_id(order_id)})
        if not order:
            raise NotFoundError("Order not found")
        return order

    # -- status changes --

    def cancel(self, order_id: str, email: Optional[str], cancel_reason: Optional[str] = None) -> dict:
        oid = _order_id(order_id)
        email = normalize_email(email)
        order = self.orders.find_one({"_id": oid, "email": email})
        if not order:
            raise NotFoundError("Order not found")

        transition = validate_customer_cancel(order["status"], cancel_reason)
        fields: Dict[str, Any] = {"status": transition.status.value, "updatedAt": utcnow()}
        if transition.cancel_reason:
            fields["cancelReason"] = transition.cancel_reason
        with persistence_guard("Failed to cancel order"):
            self.orders.update_one({"_id": oid}, {"$set": fields})
            order = self.orders.find_one({"_id": oid})
        logger.info("Order %s cancelled by customer", oid)
        return order

    def update_status(self, order_id: str, status: str, cancel_reason: Optional[str] = None,
                      tracking_number: Optional[str] = None) -> dict:
        oid = _order_id(order_id)
        order = self.orders.find_one({"_id": oid})
        if not order:
            raise NotFoundError("Order not found")

        transition = validate_transition(order["status"], status, cancel_reason, tracking_number)
        fields: Dict[str, Any] = {"status": transition.status.value, "updatedAt": utcnow()}
        if transition.cancel_reason:
            fields["cancelReason"] = transition.cancel_reason
        if transition.tracking_number:
            fields["trackingNumber"] = transition.tracking_number
        with persistence_guard("Failed to update order status"):
            self.orders.update_one({"_id": oid}, {"$set": fields})
            order = self.orders.find_one({"_id": oid})
        logger.info("Order %s moved to %s", oid, transition.status.value)
        return order
