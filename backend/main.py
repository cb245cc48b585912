import logging
import os
from contextlib import asynccontextmanager
from typing import Any, List, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr, Field
import structlog

import database
from database import DatabaseNotConfigured, ensure_indexes, get_db
from errors import ServiceError, envelope_error
from schemas import PricingOption, ProductType
import accounts
import carts
import catalog
import orders

structlog.configure(
    wrapper_class=structlog.make_filtering_bound_logger(
        getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO)
    ),
)
logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if database.db is None:
        logger.warning("database.not_configured")
    else:
        ensure_indexes(database.db)
    yield


app = FastAPI(title="3D Marketplace API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def ok(data: Any = None, message: Optional[str] = None, count: bool = False) -> dict:
    body = {"success": True}
    if message:
        body["message"] = message
    if count:
        body["count"] = len(data)
    body["data"] = data
    return body


# ========== ERRORS ==========
@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    return JSONResponse(
        status_code=exc.status_code,
        content=jsonable_encoder(envelope_error(exc.message, exc.error)),
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content=jsonable_encoder(envelope_error("Invalid request", exc.errors())),
    )


@app.exception_handler(DatabaseNotConfigured)
async def database_missing_handler(request: Request, exc: DatabaseNotConfigured):
    return JSONResponse(status_code=500, content=envelope_error(str(exc)))


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("request.failed", method=request.method, path=request.url.path)
    return JSONResponse(status_code=500, content=envelope_error("Unexpected error", str(exc)))


@app.get("/")
def root():
    return {"message": "Welcome to 3D Marketplace API"}


@app.get("/health")
def health():
    return {"status": "OK", "message": "Server is running"}


@app.get("/test")
def test_database():
    _db = database.db
    connected = _db is not None
    return {
        "backend": "✅ Running",
        "database": "✅ Connected" if connected else "❌ Not Connected",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": os.getenv("DATABASE_NAME") or "-",
        "collections": (list(_db.list_collection_names()) if connected else []),
    }


# ========== CATEGORIES ==========
class CategoryPayload(BaseModel):
    categ_name: str


@app.post("/api/category", status_code=201)
def create_category(body: CategoryPayload, db=Depends(get_db)):
    return ok(catalog.create_category(db, body.categ_name), "Category created successfully")


@app.get("/api/category")
def list_categories(db=Depends(get_db)):
    return ok(catalog.list_categories(db), count=True)


@app.get("/api/category/{category_id}")
def get_category(category_id: str, db=Depends(get_db)):
    return ok(catalog.get_category(db, category_id))


@app.put("/api/category/{category_id}")
def update_category(category_id: str, body: CategoryPayload, db=Depends(get_db)):
    return ok(catalog.update_category(db, category_id, body.categ_name), "Category updated successfully")


@app.delete("/api/category/{category_id}")
def delete_category(category_id: str, db=Depends(get_db)):
    return ok(catalog.delete_category(db, category_id), "Category deleted successfully")


# ========== PRODUCTS ==========
class ProductPayload(BaseModel):
    product_name: str
    type: ProductType
    category: str
    pricing: List[PricingOption]
    color: List[str] = Field(default_factory=list)
    images: List[str] = Field(default_factory=list)
    description: str
    stl_file: Optional[str] = None
    gcode: Optional[str] = None


class ProductUpdatePayload(BaseModel):
    product_name: Optional[str] = None
    type: Optional[ProductType] = None
    category: Optional[str] = None
    pricing: Optional[List[PricingOption]] = None
    color: Optional[List[str]] = None
    images: Optional[List[str]] = None
    description: Optional[str] = None
    stl_file: Optional[str] = None
    gcode: Optional[str] = None


@app.post("/api/products", status_code=201)
def create_product(body: ProductPayload, db=Depends(get_db)):
    return ok(catalog.create_product(db, body.model_dump()), "Product created successfully")


@app.get("/api/products")
def list_products(db=Depends(get_db)):
    return ok(catalog.list_products(db), count=True)


@app.get("/api/products/category/{category_id}")
def list_products_by_category(category_id: str, db=Depends(get_db)):
    return ok(catalog.list_products_by_category(db, category_id), count=True)


@app.get("/api/products/category-name/{categ_name}")
def list_products_by_category_name(categ_name: str, db=Depends(get_db)):
    return ok(catalog.list_products_by_category_name(db, categ_name), count=True)


@app.get("/api/products/type/{product_type}")
def list_products_by_type(product_type: str, db=Depends(get_db)):
    return ok(catalog.list_products_by_type(db, product_type), count=True)


@app.get("/api/products/{product_id}")
def get_product(product_id: str, db=Depends(get_db)):
    return ok(catalog.get_product(db, product_id))


@app.put("/api/products/{product_id}")
def update_product(product_id: str, body: ProductUpdatePayload, db=Depends(get_db)):
    changes = body.model_dump(exclude_unset=True)
    return ok(catalog.update_product(db, product_id, changes), "Product updated successfully")


@app.post("/api/products/{product_id}/resync-category")
def resync_product_category(product_id: str, db=Depends(get_db)):
    return ok(catalog.resync_category_name(db, product_id), "Category name refreshed")


@app.delete("/api/products/{product_id}")
def delete_product(product_id: str, db=Depends(get_db)):
    return ok(catalog.delete_product(db, product_id), "Product deleted successfully")


# ========== CLIENTS ==========
class ClientPayload(BaseModel):
    username: str
    email: EmailStr
    password: str = Field(min_length=6)
    phone_number: Optional[str] = None
    address: Optional[str] = None


class ClientUpdatePayload(BaseModel):
    username: Optional[str] = None
    email: Optional[EmailStr] = None
    password: Optional[str] = Field(default=None, min_length=6)
    phone_number: Optional[str] = None
    address: Optional[str] = None


@app.post("/api/client", status_code=201)
def create_client(body: ClientPayload, db=Depends(get_db)):
    return ok(accounts.create_client(db, body.model_dump()), "Client created successfully")


@app.get("/api/client")
def list_clients(db=Depends(get_db)):
    return ok(accounts.list_clients(db), count=True)


@app.get("/api/client/{client_id}")
def get_client(client_id: str, db=Depends(get_db)):
    return ok(accounts.get_client(db, client_id))


@app.put("/api/client/{client_id}")
def update_client(client_id: str, body: ClientUpdatePayload, db=Depends(get_db)):
    changes = body.model_dump(exclude_unset=True)
    return ok(accounts.update_client(db, client_id, changes), "Client updated successfully")


@app.delete("/api/client/{client_id}")
def delete_client(client_id: str, db=Depends(get_db)):
    return ok(accounts.delete_client(db, client_id), "Client deleted successfully")


# ========== ADMINS ==========
class AdminPayload(BaseModel):
    username: str
    password: str = Field(min_length=6)


class AdminUpdatePayload(BaseModel):
    username: Optional[str] = None
    password: Optional[str] = Field(default=None, min_length=6)


@app.post("/api/admin", status_code=201)
def create_admin(body: AdminPayload, db=Depends(get_db)):
    return ok(accounts.create_admin(db, body.model_dump()), "Admin created successfully")


@app.get("/api/admin")
def list_admins(db=Depends(get_db)):
    return ok(accounts.list_admins(db), count=True)


@app.get("/api/admin/{admin_id}")
def get_admin(admin_id: str, db=Depends(get_db)):
    return ok(accounts.get_admin(db, admin_id))


@app.put("/api/admin/{admin_id}")
def update_admin(admin_id: str, body: AdminUpdatePayload, db=Depends(get_db)):
    changes = body.model_dump(exclude_unset=True)
    return ok(accounts.update_admin(db, admin_id, changes), "Admin updated successfully")


@app.delete("/api/admin/{admin_id}")
def delete_admin(admin_id: str, db=Depends(get_db)):
    return ok(accounts.delete_admin(db, admin_id), "Admin deleted successfully")


# ========== CART ==========
class CartItemPayload(BaseModel):
    client_id: str
    product_id: str
    size: str
    quantity: Optional[int] = None


class CartUpdatePayload(BaseModel):
    client_id: str
    product_id: str
    size: str
    quantity: int


class CartLinePayload(BaseModel):
    client_id: str
    product_id: str
    size: str


@app.get("/api/carts/{client_id}")
def get_cart(client_id: str, db=Depends(get_db)):
    return ok(carts.get_cart(db, client_id))


@app.post("/api/carts/add")
def add_to_cart(body: CartItemPayload, db=Depends(get_db)):
    cart = carts.add_item(db, body.client_id, body.product_id, body.size, body.quantity)
    return ok(cart, "Item added to cart")


@app.put("/api/carts/update")
def update_cart_item(body: CartUpdatePayload, db=Depends(get_db)):
    cart = carts.update_item_quantity(db, body.client_id, body.product_id, body.size, body.quantity)
    return ok(cart, "Cart item updated")


@app.delete("/api/carts/remove")
def remove_from_cart(body: CartLinePayload, db=Depends(get_db)):
    cart = carts.remove_item(db, body.client_id, body.product_id, body.size)
    return ok(cart, "Item removed from cart")


@app.delete("/api/carts/clear/{client_id}")
def clear_cart(client_id: str, db=Depends(get_db)):
    return ok(carts.clear_cart(db, client_id), "Cart cleared")


# ========== ORDERS ==========
class CheckoutPayload(BaseModel):
    client_id: str


class OrderStatusPayload(BaseModel):
    status: str


@app.post("/api/orders/checkout", status_code=201)
def checkout(body: CheckoutPayload, db=Depends(get_db)):
    order = orders.checkout(db, body.client_id)
    return ok(order, "Order created successfully. Cart has been cleared.")


@app.get("/api/orders")
def list_orders(db=Depends(get_db)):
    return ok(orders.list_orders(db), count=True)


@app.get("/api/orders/client/{client_id}")
def list_client_orders(client_id: str, db=Depends(get_db)):
    return ok(orders.list_client_orders(db, client_id), count=True)


@app.get("/api/orders/{order_id}")
def get_order(order_id: str, db=Depends(get_db)):
    return ok(orders.get_order(db, order_id))


@app.put("/api/orders/{order_id}/status")
def update_order_status(order_id: str, body: OrderStatusPayload, db=Depends(get_db)):
    order = orders.update_order_status(db, order_id, body.status)
    return ok(order, "Order status updated successfully")


@app.delete("/api/orders/{order_id}")
def delete_order(order_id: str, db=Depends(get_db)):
    return ok(orders.delete_order(db, order_id), "Order deleted successfully")


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
