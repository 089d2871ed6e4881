"""
Session carts

Every operation on a stored cart starts with reconcile(), which drops lines
whose rug was deleted or deactivated and reprices the rest against the live
catalog. Carts never reserve stock; checkout does.
"""
import logging
import secrets
import string
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple

from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

import catalog
from database import CARTS, parse_object_id, utcnow
from errors import InsufficientStockError, NotFoundError, ValidationError
from pricing import effective_price
from schemas import AddToCartRequest, Cart, CartItem

logger = logging.getLogger(__name__)

MAX_QUANTITY = 1000
_ID_ALPHABET = string.ascii_lowercase + string.digits


def generate_cart_item_id() -> str:
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))
    return f"cart_item_{int(time.time() * 1000)}_{suffix}"


def validate_quantity(quantity: int) -> None:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1 or quantity > MAX_QUANTITY:
        raise ValidationError(f"Quantity must be between 1 and {MAX_QUANTITY}")


def empty_cart(session_id: str) -> dict:
    return {"sessionId": session_id, "products": [], "totalPrice": 0}


@dataclass
class Reconciled:
    """A stored cart after dropping unavailable lines."""
    doc: dict
    lines: List[dict]
    products: Dict[str, dict]
    dropped: Set[str] = field(default_factory=set)

    @property
    def total_price(self) -> int:
        total = 0
        for line in self.lines:
            total += effective_price(self.products[str(line["productId"])]) * line["quantity"]
        return total

    def find_line(self, item_id: str) -> Optional[dict]:
        for line in self.lines:
            if line["id"] == item_id:
                return line
        return None


class CartService:
    def __init__(self, db: Database):
        self.db = db
        self.carts = db[CARTS]

    # -- internals --

    def _require_session(self, session_id: Optional[str]) -> str:
        if not session_id or not session_id.strip():
            raise ValidationError("Invalid sessionId")
        return session_id

    def _load(self, session_id: str) -> Optional[dict]:
        return self.carts.find_one({"sessionId": session_id})

    def _get_or_create(self, session_id: str) -> dict:
        cart = self._load(session_id)
        if cart:
            return cart
        now = utcnow()
        try:
            self.carts.insert_one({**Cart(sessionId=session_id).model_dump(), "createdAt": now, "updatedAt": now})
        except DuplicateKeyError:
            # created concurrently by another request for the same session
            pass
        return self._load(session_id)

    def reconcile(self, cart: dict) -> Reconciled:
        lines = cart.get("products") or []
        products = catalog.find_many(self.db, (line["productId"] for line in lines))
        kept, dropped = [], set()
        for line in lines:
            if catalog.is_available(products.get(str(line["productId"]))):
                kept.append(line)
            else:
                dropped.add(line["id"])
        if dropped:
            logger.info("Dropping %d unavailable line(s) from cart %s", len(dropped), cart["_id"])
        return Reconciled(doc=cart, lines=kept, products=products, dropped=dropped)

    def _save(self, state: Reconciled) -> None:
        self.carts.update_one(
            {"_id": state.doc["_id"]},
            {"$set": {"products": state.lines, "totalPrice": state.total_price, "updatedAt": utcnow()}},
        )
        # re-read so timestamps come back at storage precision
        state.doc = self.carts.find_one({"_id": state.doc["_id"]})

    def _format(self, state: Reconciled) -> dict:
        products = []
        for line in state.lines:
            product = state.products[str(line["productId"])]
            images = product.get("images") or []
            products.append({
                "id": line["id"],
                "productId": str(line["productId"]),
                "quantity": line["quantity"],
                "size": line.get("size") or None,
                "available": True,
                "stock": product.get("stock") or 0,
                "product": {
                    "id": str(product["_id"]),
                    "title": product.get("title"),
                    "images": [images[0]] if images else None,
                    "originalPrice": product.get("originalPrice"),
                    "salePrice": product.get("salePrice"),
                    "isOnSale": product.get("isOnSale", False),
                    "currentPrice": effective_price(product),
                },
            })
        return {
            "id": str(state.doc["_id"]),
            "sessionId": state.doc["sessionId"],
            "products": products,
            "totalPrice": state.doc.get("totalPrice", 0),
            "createdAt": state.doc.get("createdAt"),
            "updatedAt": state.doc.get("updatedAt"),
        }

    # -- operations --

    def get(self, session_id: Optional[str]) -> dict:
        session_id = self._require_session(session_id)
        cart = self._load(session_id)
        if not cart:
            return empty_cart(session_id)

        state = self.reconcile(cart)
        # only write when something changed so repeated reads return identical carts
        if state.dropped or state.total_price != cart.get("totalPrice"):
            self._save(state)
        return self._format(state)

    def add(self, session_id: Optional[str], body: AddToCartRequest) -> None:
        session_id = self._require_session(session_id)
        if not body.productId:
            raise ValidationError("Product ID is required")
        product_oid = parse_object_id(body.productId)
        if product_oid is None:
            raise ValidationError("Invalid product ID")
        validate_quantity(body.quantity)

        product = catalog.find_by_id(self.db, product_oid)
        if not product:
            raise NotFoundError("Product not found")
        if not catalog.is_available(product):
            raise ValidationError("Product is not available")
        if not catalog.has_valid_stock(product):
            raise ValidationError("Product stock information is not available")

        size = catalog.normalize_size(body.size)
        if size:
            sizes = product.get("sizes") or []
            if not sizes:
                raise ValidationError("Selected product does not have size options")
            if size not in sizes:
                raise ValidationError("Invalid size for the selected product")

        state = self.reconcile(self._get_or_create(session_id))

        other_sizes_qty = 0
        match: Optional[dict] = None
        for line in state.lines:
            if str(line["productId"]) != str(product_oid):
                continue
            if (line.get("size") or None) == size:
                match = line
            else:
                other_sizes_qty += line["quantity"]

        new_quantity = body.quantity + (match["quantity"] if match else 0)
        if match and new_quantity > MAX_QUANTITY:
            raise ValidationError(f"Total quantity cannot exceed {MAX_QUANTITY}")
        if other_sizes_qty + new_quantity > product["stock"]:
            raise InsufficientStockError(product["stock"])

        if match:
            match["quantity"] = new_quantity
        else:
            line = CartItem(
                id=generate_cart_item_id(), productId=str(product_oid), quantity=body.quantity, size=size
            ).model_dump(exclude_none=True)
            line["productId"] = product_oid
            state.lines.append(line)
            state.products[str(product_oid)] = product

        self._save(state)
        logger.info("Added %s x%d to cart for session %s", product_oid, body.quantity, session_id)

    def update_item(self, session_id: Optional[str], item_id: str, quantity: int) -> Tuple[str, dict]:
        session_id = self._require_session(session_id)
        if not item_id:
            raise ValidationError("Cart item ID is required")
        validate_quantity(quantity)

        cart = self._load(session_id)
        if not cart:
            raise NotFoundError("Cart not found")
        state = self.reconcile(cart)

        if item_id in state.dropped:
            self._save(state)
            return "Cart item removed (product no longer available)", self._format(state)

        line = state.find_line(item_id)
        if line is None:
            raise NotFoundError("Cart item not found")

        product = state.products[str(line["productId"])]
        if not catalog.has_valid_stock(product):
            raise ValidationError("Product stock information is not available")
        if quantity > product["stock"]:
            raise InsufficientStockError(product["stock"])

        line["quantity"] = quantity
        self._save(state)
        return "Cart item updated", self._format(state)

    def remove_item(self, session_id: Optional[str], item_id: str) -> dict:
        session_id = self._require_session(session_id)
        if not item_id:
            raise ValidationError("Cart item ID is required")

        cart = self._load(session_id)
        if not cart:
            raise NotFoundError("Cart not found")
        state = self.reconcile(cart)

        line = state.find_line(item_id)
        if line is None and item_id not in state.dropped:
            raise NotFoundError("Cart item not found")
        if line is not None:
            state.lines.remove(line)

        self._save(state)
        return self._format(state)

    def clear(self, session_id: Optional[str]) -> dict:
        session_id = self._require_session(session_id)
        result = self.carts.delete_one({"sessionId": session_id})
        if result.deleted_count == 0:
            raise NotFoundError("Cart not found")
        logger.info("Cart cleared for session %s", session_id)
        return empty_cart(session_id)
