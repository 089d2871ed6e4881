"""Price rules shared by the catalog, cart and checkout."""
import math
from typing import Any, Mapping


def calculate_sale_price(original_price: int, discount_percent: float) -> int:
    """Sale price rounded half up, e.g. 999 at 50% -> 500."""
    return int(math.floor(original_price * (1 - discount_percent / 100) + 0.5))


def effective_price(product: Mapping[str, Any]) -> int:
    """
    Price actually charged for a rug right now.

    The sale price only applies when the rug is flagged on sale and the sale
    price is positive and below the original price; anything else falls back
    to the original price.
    """
    original = product.get("originalPrice") or 0
    sale = product.get("salePrice") or 0
    if product.get("isOnSale") and sale > 0 and sale < original:
        return sale
    return original
