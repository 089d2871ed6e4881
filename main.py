import logging
import os
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import BackgroundTasks, Depends, FastAPI, Header, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.database import Database

import analytics
import catalog
import database
from auth import bearer_token, get_current_user, require_admin, revoke_token
from cart import CartService
from config import get_settings
from database import doc_to_dict, ensure_indexes, get_db, utcnow
from errors import NotFoundError, PersistenceError, StoreError, ValidationError
from notifications import Notifier, dispatch, get_notifier
from orders import (
    OrderFilter,
    OrderService,
    format_admin_order,
    format_created_order,
    format_customer_order,
    format_status_change,
)
from schemas import (
    AddToCartRequest,
    CancelOrderRequest,
    CreateOrderRequest,
    RugCreateRequest,
    RugUpdateRequest,
    ShippingFeeUpsertRequest,
    UpdateCartItemRequest,
    UpdateOrderStatusRequest,
)
from session import get_session_id
from shipping import format_shipping_config, get_shipping_config, upsert_shipping_config

settings = get_settings()
logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger("rugstore")


@asynccontextmanager
async def lifespan(app: FastAPI):
    if database.db is not None:
        try:
            ensure_indexes(database.db)
        except Exception as e:
            logger.error("Could not create indexes: %s", e)
    else:
        logger.warning("DATABASE_URL not set; database routes will fail")
    yield


app = FastAPI(title="Dastkar Rugs API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Set-Cookie"],
)


# ---------------------- Errors ----------------------

@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError) -> JSONResponse:
    content = {"success": False, "message": exc.message}
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        if isinstance(exc, PersistenceError) and exc.__cause__ is not None and not settings.is_production:
            content["error"] = str(exc.__cause__)
    return JSONResponse(status_code=exc.status_code, content=content)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    message = "Invalid request"
    if errors:
        first = errors[0]
        field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{field}: {first.get('msg')}" if field else first.get("msg", message)
    return JSONResponse(status_code=400, content={"success": False, "message": message})


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    content = {"success": False, "message": "Internal server error"}
    if not settings.is_production:
        content["error"] = str(exc)
    return JSONResponse(status_code=500, content=content)


# ---------------------- Dependencies ----------------------

def get_cart_service(db: Database = Depends(get_db)) -> CartService:
    return CartService(db)


def get_order_service(db: Database = Depends(get_db)) -> OrderService:
    return OrderService(db)


# ---------------------- Basic Routes ----------------------

@app.get("/")
def read_root():
    return {"message": "Dastkar Rugs Backend Running", "version": "1.0.0"}


@app.get("/health")
def health():
    status = "disconnected"
    if database.db is not None:
        try:
            database.db.command("ping")
            status = "connected"
        except Exception as e:
            logger.warning("Health check ping failed: %s", e)
    return {"status": "ok", "database": status, "timestamp": utcnow()}


@app.get("/test")
def test_database():
    """Simple DB connectivity test"""
    resp = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "collections": []
    }
    try:
        if database.db is not None:
            resp["database"] = "✅ Connected"
            try:
                resp["collections"] = database.db.list_collection_names()[:10]
            except Exception as e:
                resp["database"] = f"⚠️ Connected but {str(e)[:60]}"
    except Exception as e:
        resp["database"] = f"❌ {str(e)[:60]}"
    resp["database_url"] = "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set"
    return resp


# ---------------------- Rugs ----------------------

@app.get("/rugs")
def list_rugs(
    category: Optional[str] = None,
    brand: Optional[str] = None,
    isOnSale: Optional[bool] = None,
    isBestSeller: Optional[bool] = None,
    minPrice: Optional[int] = None,
    maxPrice: Optional[int] = None,
    colors: List[str] = Query([]),
    sizes: List[str] = Query([]),
    page: int = 1,
    limit: int = 20,
    sortBy: str = "createdAt",
    sortOrder: str = "desc",
    db: Database = Depends(get_db),
):
    criteria = catalog.RugFilter(
        category=category, brand=brand, is_on_sale=isOnSale, is_best_seller=isBestSeller,
        is_active=True, min_price=minPrice, max_price=maxPrice, colors=colors, sizes=sizes,
        page=page, limit=limit, sort_by=sortBy, sort_order=sortOrder,
    )
    docs, pagination = catalog.list_rugs(db, criteria)
    return {"success": True, "rugs": [doc_to_dict(d) for d in docs], "pagination": pagination}


@app.get("/rugs/{rug_id}")
def get_rug(rug_id: str, db: Database = Depends(get_db)):
    if database.parse_object_id(rug_id) is None:
        raise ValidationError("Invalid rug ID")
    rug = catalog.find_by_id(db, rug_id)
    if not rug or not rug.get("isActive", True):
        raise NotFoundError("Rug not found")
    return {"success": True, "rug": doc_to_dict(rug)}


@app.post("/rugs", status_code=201)
def create_rug(body: RugCreateRequest, user: dict = Depends(require_admin), db: Database = Depends(get_db)):
    rug = catalog.create_rug(db, body, created_by=user.get("id"))
    return {"success": True, "message": "Rug created successfully", "rug": doc_to_dict(rug)}


@app.put("/rugs/{rug_id}", dependencies=[Depends(require_admin)])
def update_rug(rug_id: str, body: RugUpdateRequest, db: Database = Depends(get_db)):
    rug = catalog.update_rug(db, rug_id, body)
    return {"success": True, "message": "Rug updated successfully", "rug": doc_to_dict(rug)}


@app.delete("/rugs/{rug_id}", dependencies=[Depends(require_admin)])
def delete_rug(rug_id: str, db: Database = Depends(get_db)):
    catalog.delete_rug(db, rug_id)
    return {"success": True, "message": "Rug deleted successfully"}


@app.get("/admin/rugs", dependencies=[Depends(require_admin)])
def list_rugs_admin(
    category: Optional[str] = None,
    brand: Optional[str] = None,
    isOnSale: Optional[bool] = None,
    isBestSeller: Optional[bool] = None,
    isActive: Optional[bool] = None,
    colors: List[str] = Query([]),
    sizes: List[str] = Query([]),
    page: int = 1,
    limit: int = 20,
    sortBy: str = "createdAt",
    sortOrder: str = "desc",
    db: Database = Depends(get_db),
):
    criteria = catalog.RugFilter(
        category=category, brand=brand, is_on_sale=isOnSale, is_best_seller=isBestSeller,
        is_active=isActive, colors=colors, sizes=sizes,
        page=page, limit=limit, sort_by=sortBy, sort_order=sortOrder,
    )
    docs, pagination = catalog.list_rugs(db, criteria)
    return {"success": True, "rugs": [doc_to_dict(d) for d in docs], "pagination": pagination}


# ---------------------- Cart ----------------------

@app.get("/cart")
def get_cart(session_id: str = Depends(get_session_id), carts: CartService = Depends(get_cart_service)):
    return {"success": True, "cart": carts.get(session_id)}


@app.post("/cart")
def add_to_cart(body: AddToCartRequest, session_id: str = Depends(get_session_id),
                carts: CartService = Depends(get_cart_service)):
    carts.add(session_id, body)
    return {"success": True, "message": "Product added to cart successfully"}


@app.put("/cart/item/{cart_item_id}")
def update_cart_item(cart_item_id: str, body: UpdateCartItemRequest, session_id: str = Depends(get_session_id),
                     carts: CartService = Depends(get_cart_service)):
    message, cart = carts.update_item(session_id, cart_item_id, body.quantity)
    return {"success": True, "message": message, "cart": cart}


@app.delete("/cart/item/{cart_item_id}")
def remove_cart_item(cart_item_id: str, session_id: str = Depends(get_session_id),
                     carts: CartService = Depends(get_cart_service)):
    cart = carts.remove_item(session_id, cart_item_id)
    return {"success": True, "message": "Item removed from cart", "cart": cart}


@app.delete("/cart")
def clear_cart(session_id: str = Depends(get_session_id), carts: CartService = Depends(get_cart_service)):
    cart = carts.clear(session_id)
    return {"success": True, "message": "Cart cleared successfully", "cart": cart}


# ---------------------- Checkout / Orders ----------------------

@app.post("/orders", status_code=201)
def create_order(body: CreateOrderRequest, background_tasks: BackgroundTasks,
                 orders: OrderService = Depends(get_order_service),
                 notifier: Notifier = Depends(get_notifier)):
    order = orders.create(body)
    background_tasks.add_task(dispatch, notifier.send_order_confirmation, order)
    return {"success": True, "message": "Order created successfully", "order": format_created_order(order)}


@app.get("/orders")
def list_my_orders(email: Optional[str] = None, orders: OrderService = Depends(get_order_service)):
    docs = orders.list_for_email(email)
    return {"success": True, "orders": [format_customer_order(d) for d in docs]}


@app.patch("/orders/{order_id}/cancel")
def cancel_order(order_id: str, email: Optional[str] = None, body: Optional[CancelOrderRequest] = None,
                 orders: OrderService = Depends(get_order_service)):
    order = orders.cancel(order_id, email, body.cancelReason if body else None)
    return {"success": True, "message": "Order cancelled successfully", "order": {
        "id": str(order["_id"]),
        "status": order["status"],
        "cancelReason": order.get("cancelReason"),
        "updatedAt": order.get("updatedAt"),
    }}


@app.get("/admin/orders", dependencies=[Depends(require_admin)])
def list_orders_admin(
    email: Optional[str] = None,
    status: Optional[str] = None,
    paymentMethod: Optional[str] = None,
    page: int = 1,
    limit: int = 20,
    orders: OrderService = Depends(get_order_service),
):
    criteria = OrderFilter(email=email, status=status, payment_method=paymentMethod, page=page, limit=limit)
    docs, pagination = orders.list_admin(criteria)
    return {"success": True, "orders": [format_admin_order(d) for d in docs], "pagination": pagination}


@app.post("/admin/orders/recover-stock", dependencies=[Depends(require_admin)])
def recover_stock(orders: OrderService = Depends(get_order_service)):
    recovered = orders.recover_uncommitted_orders()
    return {"success": True, "message": f"Recovered {len(recovered)} order(s)", "orders": recovered}


@app.get("/admin/orders/{order_id}", dependencies=[Depends(require_admin)])
def get_order_admin(order_id: str, orders: OrderService = Depends(get_order_service)):
    return {"success": True, "order": format_admin_order(orders.get(order_id))}


@app.patch("/admin/orders/{order_id}/status", dependencies=[Depends(require_admin)])
def update_order_status(order_id: str, body: UpdateOrderStatusRequest, background_tasks: BackgroundTasks,
                        orders: OrderService = Depends(get_order_service),
                        notifier: Notifier = Depends(get_notifier)):
    order = orders.update_status(order_id, body.status, body.cancelReason, body.trackingNumber)
    if body.status == "delivered":
        background_tasks.add_task(dispatch, notifier.send_order_delivered, order)
    return {"success": True, "message": "Order status updated successfully", "order": format_status_change(order)}


# ---------------------- Shipping ----------------------

@app.get("/shipping-fee")
def get_shipping_fee(country: Optional[str] = None, db: Database = Depends(get_db)):
    return {"success": True, "shippingFee": format_shipping_config(get_shipping_config(db, country))}


@app.post("/admin/shipping-fee", dependencies=[Depends(require_admin)])
def upsert_shipping_fee(body: ShippingFeeUpsertRequest, db: Database = Depends(get_db)):
    config, created = upsert_shipping_config(db, body)
    message = "Shipping fee created successfully" if created else "Shipping fee updated successfully"
    return {"success": True, "message": message, "shippingFee": format_shipping_config(config)}


# ---------------------- Admin analytics / auth ----------------------

@app.get("/admin/analytics/overview", dependencies=[Depends(require_admin)])
def analytics_overview(time: Optional[str] = None, db: Database = Depends(get_db)):
    return {"success": True, **analytics.overview(db, time)}


@app.post("/auth/logout", dependencies=[Depends(get_current_user)])
def logout(authorization: str = Header(...), db: Database = Depends(get_db)):
    revoke_token(db, bearer_token(authorization))
    return {"success": True, "message": "Logged out successfully"}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
