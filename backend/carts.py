"""
Cart engine: one mutable list of (product_id, size, quantity) lines per client.

Every write is a compare-and-swap on the cart's `revision` counter, so two
concurrent writers for the same client cannot silently overwrite each other:
the loser re-reads the cart and re-applies its change.

The cart view re-prices every line against the live catalog and quietly
leaves out lines whose product or size is gone. Those lines stay in storage.
"""
from typing import Callable, List, Optional

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError
import structlog

from accounts import get_client_doc
from catalog import available_sizes, get_product_doc, price_for_size
from database import create_document, find_by_id, now, oid, to_str_id
from errors import BadRequestError, ConflictError, NotFoundError
from schemas import Cart

logger = structlog.get_logger(__name__)

MAX_WRITE_ATTEMPTS = 5

HIDDEN_FIELDS = ("revision",)


def _same_line(item: dict, product_id: Optional[str], size: str) -> bool:
    return item["product_id"] == product_id and item["size"] == size


def _canonical(id_str: str) -> Optional[str]:
    """Stored form of an id, or None when it cannot be an ObjectId."""
    _id = oid(id_str)
    return str(_id) if _id is not None else None


def _cart_owner(client_id: str) -> str:
    owner = _canonical(client_id)
    if owner is None:
        raise NotFoundError("Cart not found")
    return owner


def _public(cart: dict) -> dict:
    return to_str_id(cart, hidden=HIDDEN_FIELDS)


def _find_or_create(db, client_id: str) -> dict:
    try:
        return db["cart"].find_one_and_update(
            {"client_id": client_id},
            {"$setOnInsert": {"items": [], "revision": 0, "created_at": now(), "updated_at": now()}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
    except DuplicateKeyError:
        # another request created it first
        return db["cart"].find_one({"client_id": client_id})


def _write_cart(db, client_id: str, mutate: Callable[[List[dict]], List[dict]],
                create_missing: bool = False) -> dict:
    """Read-modify-write the cart items under a revision check.

    `mutate` gets a copy of the stored items and returns the new list; it may
    raise to abort without writing anything.
    """
    for attempt in range(1, MAX_WRITE_ATTEMPTS + 1):
        cart = db["cart"].find_one({"client_id": client_id})
        if cart is None and not create_missing:
            raise NotFoundError("Cart not found")

        items = mutate([dict(it) for it in (cart or {}).get("items", [])])

        if cart is None:
            try:
                create_document(db, "cart", Cart(client_id=client_id, items=items))
            except DuplicateKeyError:
                logger.warning("cart.write_conflict", client_id=client_id, attempt=attempt)
                continue
        else:
            result = db["cart"].update_one(
                {"_id": cart["_id"], "revision": cart.get("revision")},
                {"$set": {"items": items, "updated_at": now()}, "$inc": {"revision": 1}},
            )
            if result.matched_count == 0:
                logger.warning("cart.write_conflict", client_id=client_id, attempt=attempt)
                continue

        return _public(db["cart"].find_one({"client_id": client_id}))

    raise ConflictError("Cart was modified concurrently, please retry")


def get_cart(db, client_id: str) -> dict:
    """Priced view of the client's cart, creating an empty cart if none exists."""
    client = get_client_doc(db, client_id)
    client_id = str(client["_id"])
    cart = _find_or_create(db, client_id)

    items = []
    total_price = 0
    for item in cart.get("items", []):
        product = find_by_id(db, "product", item["product_id"])
        if not product:
            continue
        unit_price = price_for_size(product, item["size"])
        if unit_price is None:
            continue
        item_total = unit_price * item["quantity"]
        total_price += item_total
        items.append({
            "product_id": str(product["_id"]),
            "product_name": product.get("product_name"),
            "categ_name": product.get("categ_name"),
            "size": item["size"],
            "quantity": item["quantity"],
            "price_per_unit": unit_price,
            "item_total": item_total,
            "images": product.get("images", []),
        })

    return {"client_id": client_id, "items": items, "total_price": total_price}


def add_item(db, client_id: str, product_id: str, size: str, quantity: Optional[int] = None) -> dict:
    client = get_client_doc(db, client_id)
    product = get_product_doc(db, product_id)
    if quantity is None:
        quantity = 1
    if quantity < 1:
        raise BadRequestError("Quantity must be at least 1")
    if price_for_size(product, size) is None:
        raise BadRequestError(
            f"Size '{size}' not available for this product. "
            f"Available sizes: {', '.join(available_sizes(product))}"
        )
    client_id = str(client["_id"])
    product_id = str(product["_id"])

    def merge(items):
        for item in items:
            if _same_line(item, product_id, size):
                item["quantity"] += quantity
                return items
        items.append({"product_id": product_id, "size": size, "quantity": quantity})
        return items

    cart = _write_cart(db, client_id, merge, create_missing=True)
    logger.info("cart.item_added", client_id=client_id, product_id=product_id, size=size, quantity=quantity)
    return cart


def update_item_quantity(db, client_id: str, product_id: str, size: str, quantity: Optional[int]) -> dict:
    if quantity is None or quantity < 1:
        raise BadRequestError("Quantity must be at least 1")

    client_id = _cart_owner(client_id)
    product_id = _canonical(product_id)

    def replace(items):
        for item in items:
            if _same_line(item, product_id, size):
                item["quantity"] = quantity
                return items
        raise NotFoundError("Item not found in cart")

    cart = _write_cart(db, client_id, replace)
    logger.info("cart.item_updated", client_id=client_id, product_id=product_id, size=size, quantity=quantity)
    return cart


def remove_item(db, client_id: str, product_id: str, size: str) -> dict:
    client_id = _cart_owner(client_id)
    product_id = _canonical(product_id)

    def drop(items):
        kept = [it for it in items if not _same_line(it, product_id, size)]
        if len(kept) == len(items):
            raise NotFoundError("Item not found in cart")
        return kept

    cart = _write_cart(db, client_id, drop)
    logger.info("cart.item_removed", client_id=client_id, product_id=product_id, size=size)
    return cart


def clear_cart(db, client_id: str) -> dict:
    client_id = _cart_owner(client_id)
    cart = _write_cart(db, client_id, lambda items: [])
    logger.info("cart.cleared", client_id=client_id)
    return cart
