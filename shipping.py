"""Per-country shipping fee rules."""
import logging
from typing import Optional, Tuple

from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from config import get_settings
from database import SHIPPING_FEES, utcnow
from errors import ConflictError, NotFoundError, ValidationError
from schemas import PydanticValidationError, ShippingFee, ShippingFeeUpsertRequest, describe_error

logger = logging.getLogger(__name__)


def normalize_country(country: Optional[str]) -> str:
    if country is None or not country.strip():
        return get_settings().default_country
    return country.strip()


def calculate_shipping_fee(db: Database, order_amount: int, country: Optional[str] = None) -> int:
    """
    Shipping charge for an order subtotal.

    No active rule for the country means free shipping, and so does any lookup
    failure: a shipping problem must never block checkout.
    """
    try:
        config = db[SHIPPING_FEES].find_one({"country": normalize_country(country), "isActive": True})
    except Exception as e:
        logger.error("Error calculating shipping fee: %s", e)
        return 0

    if not config:
        return 0
    if order_amount >= config.get("freeShippingThreshold", 0):
        return 0
    return int(config.get("shippingFee", 0))


def get_shipping_config(db: Database, country: Optional[str] = None) -> dict:
    name = normalize_country(country)
    config = db[SHIPPING_FEES].find_one({"country": name})
    if not config:
        raise NotFoundError(f"Shipping fee configuration not found for country: {name}")
    return config


def upsert_shipping_config(db: Database, body: ShippingFeeUpsertRequest) -> Tuple[dict, bool]:
    """Create or update the rule for body.country. Returns (document, created)."""
    if body.freeShippingThreshold < 0:
        raise ValidationError("freeShippingThreshold must be a non-negative number")
    if body.shippingFee < 0:
        raise ValidationError("shippingFee must be a non-negative number")
    country = body.country.strip()
    if not country:
        raise ValidationError("Country name cannot be empty")

    try:
        rule = ShippingFee(
            freeShippingThreshold=body.freeShippingThreshold,
            shippingFee=body.shippingFee,
            country=country,
            isActive=body.isActive if body.isActive is not None else True,
        )
    except PydanticValidationError as e:
        raise ValidationError(describe_error(e)) from e

    now = utcnow()
    existing = db[SHIPPING_FEES].find_one({"country": country})
    if existing:
        fields = {
            "freeShippingThreshold": body.freeShippingThreshold,
            "shippingFee": body.shippingFee,
            "updatedAt": now,
        }
        if body.isActive is not None:
            fields["isActive"] = body.isActive
        db[SHIPPING_FEES].update_one({"_id": existing["_id"]}, {"$set": fields})
        logger.info("Shipping fee updated for %s", country)
        return db[SHIPPING_FEES].find_one({"_id": existing["_id"]}), False

    doc = rule.model_dump()
    doc["createdAt"] = now
    doc["updatedAt"] = now
    try:
        result = db[SHIPPING_FEES].insert_one(doc)
    except DuplicateKeyError:
        raise ConflictError("Shipping fee configuration already exists for this country")
    logger.info("Shipping fee created for %s", country)
    return db[SHIPPING_FEES].find_one({"_id": result.inserted_id}), True


def format_shipping_config(config: dict) -> dict:
    return {
        "id": str(config["_id"]),
        "freeShippingThreshold": config.get("freeShippingThreshold"),
        "shippingFee": config.get("shippingFee"),
        "country": config.get("country"),
        "isActive": config.get("isActive", True),
        "createdAt": config.get("createdAt"),
        "updatedAt": config.get("updatedAt"),
    }
