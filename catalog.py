"""
Catalog store

Rug documents live in the "rug" collection. Stock is only ever changed with
atomic $inc updates; nothing here reads stock, computes, and writes it back.
"""
import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Literal, Optional, Tuple

from bson import ObjectId
from pymongo import ASCENDING, DESCENDING
from pymongo.database import Database

from database import RUGS, parse_object_id, utcnow
from errors import NotFoundError, ValidationError
from pricing import calculate_sale_price
from schemas import PydanticValidationError, Rug, RugCreateRequest, RugUpdateRequest, describe_error

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100
DEFAULT_PAGE_SIZE = 20


def find_by_id(db: Database, rug_id: Any) -> Optional[dict]:
    oid = parse_object_id(rug_id)
    if oid is None:
        return None
    return db[RUGS].find_one({"_id": oid})


def find_many(db: Database, rug_ids: Iterable[Any]) -> Dict[str, dict]:
    """Fetch rugs in one query, keyed by string id. Unknown ids are simply absent."""
    oids = {oid for oid in (parse_object_id(i) for i in rug_ids) if oid is not None}
    if not oids:
        return {}
    return {str(doc["_id"]): doc for doc in db[RUGS].find({"_id": {"$in": list(oids)}})}


def decrement_stock(db: Database, rug_id: ObjectId, amount: int) -> None:
    db[RUGS].update_one({"_id": rug_id}, {"$inc": {"stock": -amount}, "$set": {"updatedAt": utcnow()}})


def increment_stock(db: Database, rug_id: ObjectId, amount: int) -> None:
    db[RUGS].update_one({"_id": rug_id}, {"$inc": {"stock": amount}, "$set": {"updatedAt": utcnow()}})


def is_available(product: Optional[dict]) -> bool:
    return bool(product) and bool(product.get("isActive", True))


def has_valid_stock(product: dict) -> bool:
    stock = product.get("stock")
    return isinstance(stock, int) and not isinstance(stock, bool) and stock >= 0


def normalize_size(size: Optional[str]) -> Optional[str]:
    if isinstance(size, str) and size.strip():
        return size.strip()
    return None


def _validate_images(images: List[str]) -> None:
    if not images or len(images) > 5:
        raise ValidationError("Please provide 1-5 image URLs")
    for url in images:
        if not url or not isinstance(url, str):
            raise ValidationError("Invalid image URL format. Images must be uploaded via /upload/image endpoint first.")
        if not url.startswith(("https://", "http://")):
            raise ValidationError("Invalid image URL format. Images must be valid S3 URLs.")


def _validate_pricing(original_price: int, discount_percent: float) -> None:
    if not original_price or original_price <= 0:
        raise ValidationError("Valid original price is required")
    if discount_percent < 0 or discount_percent > 100:
        raise ValidationError("Discount percent must be between 0 and 100")


def _build_rug(**data) -> Rug:
    try:
        return Rug(**data)
    except PydanticValidationError as e:
        raise ValidationError(describe_error(e)) from e


def create_rug(db: Database, body: RugCreateRequest, created_by: Optional[str] = None) -> dict:
    _validate_pricing(body.originalPrice, body.discountPercent)
    _validate_images(body.images)
    if body.stock < 0:
        raise ValidationError("Stock must be a non-negative number")

    rug = _build_rug(
        **body.model_dump(),
        salePrice=calculate_sale_price(body.originalPrice, body.discountPercent),
        createdBy=created_by,
    )
    doc = rug.model_dump()
    now = utcnow()
    doc["createdAt"] = now
    doc["updatedAt"] = now
    result = db[RUGS].insert_one(doc)
    logger.info("Rug created: %s", result.inserted_id)
    return db[RUGS].find_one({"_id": result.inserted_id})


def update_rug(db: Database, rug_id: str, body: RugUpdateRequest) -> dict:
    oid = parse_object_id(rug_id)
    if oid is None:
        raise ValidationError("Invalid rug ID")
    rug = db[RUGS].find_one({"_id": oid})
    if not rug:
        raise NotFoundError("Rug not found")

    fields: Dict[str, Any] = {}
    if body.images is not None:
        _validate_images(body.images)
        fields["images"] = body.images

    price_changed = body.originalPrice is not None or body.discountPercent is not None
    if price_changed:
        original = body.originalPrice if body.originalPrice is not None else rug.get("originalPrice", 0)
        discount = body.discountPercent if body.discountPercent is not None else rug.get("discountPercent", 0)
        _validate_pricing(original, discount)
        fields["originalPrice"] = original
        fields["discountPercent"] = discount
        fields["salePrice"] = calculate_sale_price(original, discount)
        fields["isOnSale"] = bool(body.isOnSale)
    elif body.isOnSale is not None:
        fields["isOnSale"] = body.isOnSale

    if body.stock is not None:
        if body.stock < 0:
            raise ValidationError("Stock must be a non-negative number")
        fields["stock"] = body.stock

    for name in ("title", "brand", "description", "category", "colors", "sizes", "isBestSeller", "isActive"):
        value = getattr(body, name)
        if value is not None:
            fields[name] = value

    merged = {**rug, **fields}
    _build_rug(**{name: merged.get(name) for name in Rug.model_fields if name in merged})

    fields["updatedAt"] = utcnow()
    db[RUGS].update_one({"_id": oid}, {"$set": fields})
    logger.info("Rug updated: %s", oid)
    return db[RUGS].find_one({"_id": oid})


def delete_rug(db: Database, rug_id: str) -> None:
    oid = parse_object_id(rug_id)
    if oid is None:
        raise ValidationError("Invalid rug ID")
    result = db[RUGS].delete_one({"_id": oid})
    if result.deleted_count == 0:
        raise NotFoundError("Rug not found")
    logger.info("Rug deleted: %s", oid)


# ---------------------- Listing ----------------------

SortField = Literal["createdAt", "price", "title"]
SortOrder = Literal["asc", "desc"]


@dataclass
class RugFilter:
    category: Optional[str] = None
    brand: Optional[str] = None
    is_on_sale: Optional[bool] = None
    is_best_seller: Optional[bool] = None
    is_active: Optional[bool] = None
    min_price: Optional[int] = None
    max_price: Optional[int] = None
    colors: List[str] = field(default_factory=list)
    sizes: List[str] = field(default_factory=list)
    page: int = 1
    limit: int = DEFAULT_PAGE_SIZE
    sort_by: SortField = "createdAt"
    sort_order: SortOrder = "desc"


def build_rug_query(criteria: RugFilter) -> Dict[str, Any]:
    query: Dict[str, Any] = {}
    if criteria.category:
        query["category"] = criteria.category
    if criteria.brand:
        query["brand"] = criteria.brand
    if criteria.is_on_sale is not None:
        query["isOnSale"] = criteria.is_on_sale
    if criteria.is_best_seller is not None:
        query["isBestSeller"] = criteria.is_best_seller
    if criteria.is_active is not None:
        query["isActive"] = criteria.is_active

    price: Dict[str, int] = {}
    if criteria.min_price is not None:
        price["$gte"] = criteria.min_price
    if criteria.max_price is not None:
        price["$lte"] = criteria.max_price
    if price:
        query["salePrice"] = price

    if criteria.colors:
        query["colors"] = {"$in": criteria.colors}
    if criteria.sizes:
        query["sizes"] = {"$in": criteria.sizes}
    return query


def build_rug_sort(criteria: RugFilter) -> List[Tuple[str, int]]:
    direction = ASCENDING if criteria.sort_order == "asc" else DESCENDING
    key = {"price": "salePrice", "title": "title"}.get(criteria.sort_by, "createdAt")
    return [(key, direction)]


def list_rugs(db: Database, criteria: RugFilter) -> Tuple[List[dict], dict]:
    page = criteria.page if criteria.page > 0 else 1
    limit = criteria.limit if 0 < criteria.limit <= MAX_PAGE_SIZE else DEFAULT_PAGE_SIZE
    query = build_rug_query(criteria)
    docs = list(
        db[RUGS].find(query).sort(build_rug_sort(criteria)).skip((page - 1) * limit).limit(limit)
    )
    total = db[RUGS].count_documents(query)
    pagination = {"page": page, "limit": limit, "total": total, "pages": math.ceil(total / limit)}
    return docs, pagination
