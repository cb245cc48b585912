"""
Catalog store: categories and products.

Products keep a snapshot of their category's display name (`categ_name`).
The snapshot is taken when a product is created, when its `category` is
reassigned, and when `resync_category_name` is called. Renaming a category
leaves existing snapshots stale.
"""
from typing import List, Optional

from pydantic import ValidationError
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError
import structlog

from database import create_document, find_by_id, get_documents, now, oid, to_str_id
from errors import BadRequestError, NotFoundError, from_validation
from schemas import PRODUCT_TYPES, Category, Product

logger = structlog.get_logger(__name__)


# ---------- Pricing helpers ----------

def available_sizes(product: dict) -> List[str]:
    return [p["size"] for p in product.get("pricing", [])]


def price_for_size(product: dict, size: str) -> Optional[float]:
    """Unit price for `size`, or None when the product does not offer it."""
    for option in product.get("pricing", []):
        if option["size"] == size:
            return option["price"]
    return None


def get_product_doc(db, product_id: str) -> dict:
    product = find_by_id(db, "product", product_id)
    if not product:
        raise NotFoundError("Product not found")
    return product


# ---------- Categories ----------

def _category_name_taken(db, name: str, exclude_id=None) -> bool:
    filt = {"categ_name": name}
    if exclude_id is not None:
        filt["_id"] = {"$ne": exclude_id}
    return db["category"].find_one(filt) is not None


def create_category(db, categ_name: str) -> dict:
    try:
        category = Category(categ_name=categ_name)
    except ValidationError as e:
        raise from_validation(e)
    if _category_name_taken(db, category.categ_name):
        raise BadRequestError("Category with this name already exists")
    try:
        cid = create_document(db, "category", category)
    except DuplicateKeyError:
        raise BadRequestError("Category with this name already exists")
    logger.info("category.created", category_id=cid, categ_name=category.categ_name)
    return to_str_id(db["category"].find_one({"_id": oid(cid)}))


def list_categories(db) -> List[dict]:
    return [to_str_id(d) for d in get_documents(db, "category")]


def get_category(db, category_id: str) -> dict:
    doc = find_by_id(db, "category", category_id)
    if not doc:
        raise NotFoundError("Category not found")
    return to_str_id(doc)


def update_category(db, category_id: str, categ_name: str) -> dict:
    _id = oid(category_id)
    if _id is None or db["category"].find_one({"_id": _id}) is None:
        raise NotFoundError("Category not found")
    try:
        category = Category(categ_name=categ_name)
    except ValidationError as e:
        raise from_validation(e)
    if _category_name_taken(db, category.categ_name, exclude_id=_id):
        raise BadRequestError("Category with this name already exists")
    doc = db["category"].find_one_and_update(
        {"_id": _id},
        {"$set": {"categ_name": category.categ_name, "updated_at": now()}},
        return_document=ReturnDocument.AFTER,
    )
    # product snapshots are intentionally left as they are
    logger.info("category.updated", category_id=category_id, categ_name=category.categ_name)
    return to_str_id(doc)


def delete_category(db, category_id: str) -> dict:
    _id = oid(category_id)
    doc = db["category"].find_one_and_delete({"_id": _id}) if _id else None
    if not doc:
        raise NotFoundError("Category not found")
    logger.info("category.deleted", category_id=category_id)
    return to_str_id(doc)


# ---------- Products ----------

def _validated_product(data: dict) -> Product:
    try:
        return Product(**data)
    except ValidationError as e:
        raise from_validation(e)


def create_product(db, data: dict) -> dict:
    category = find_by_id(db, "category", data.get("category"))
    if not category:
        raise NotFoundError("Category not found")
    product = _validated_product({**data, "category": str(category["_id"]),
                                  "categ_name": category["categ_name"]})
    pid = create_document(db, "product", product)
    logger.info("product.created", product_id=pid, category_id=product.category)
    return to_str_id(db["product"].find_one({"_id": oid(pid)}))


def list_products(db, filter_dict: Optional[dict] = None) -> List[dict]:
    return [to_str_id(d) for d in get_documents(db, "product", filter_dict)]


def get_product(db, product_id: str) -> dict:
    return to_str_id(get_product_doc(db, product_id))


def list_products_by_category(db, category_id: str) -> List[dict]:
    category = find_by_id(db, "category", category_id)
    if not category:
        raise NotFoundError("Category not found")
    return list_products(db, {"category": str(category["_id"])})


def list_products_by_category_name(db, categ_name: str) -> List[dict]:
    return list_products(db, {"categ_name": categ_name})


def list_products_by_type(db, product_type: str) -> List[dict]:
    if product_type not in PRODUCT_TYPES:
        raise BadRequestError('Type must be either "custom" or "catalogue"')
    return list_products(db, {"type": product_type})


def update_product(db, product_id: str, changes: dict) -> dict:
    current = get_product_doc(db, product_id)
    changes = {k: v for k, v in changes.items() if k not in ("_id", "id", "categ_name")}

    if changes.get("category"):
        category = find_by_id(db, "category", changes["category"])
        if not category:
            raise NotFoundError("Category not found")
        changes["category"] = str(category["_id"])
        changes["categ_name"] = category["categ_name"]

    merged = {k: v for k, v in current.items() if k in Product.model_fields}
    merged.update(changes)
    product = _validated_product(merged)

    fields = product.model_dump()
    fields["updated_at"] = now()
    doc = db["product"].find_one_and_update(
        {"_id": current["_id"]},
        {"$set": fields},
        return_document=ReturnDocument.AFTER,
    )
    if not doc:
        raise NotFoundError("Product not found")
    logger.info("product.updated", product_id=product_id, fields=sorted(changes))
    return to_str_id(doc)


def resync_category_name(db, product_id: str) -> dict:
    """Refresh the product's category-name snapshot from the live category."""
    product = get_product_doc(db, product_id)
    category = find_by_id(db, "category", product.get("category"))
    if not category:
        raise NotFoundError("Category not found")
    doc = db["product"].find_one_and_update(
        {"_id": product["_id"]},
        {"$set": {"categ_name": category["categ_name"], "updated_at": now()}},
        return_document=ReturnDocument.AFTER,
    )
    if product.get("categ_name") != category["categ_name"]:
        logger.info("product.category_resynced", product_id=product_id,
                    old=product.get("categ_name"), new=category["categ_name"])
    return to_str_id(doc)


def delete_product(db, product_id: str) -> dict:
    _id = oid(product_id)
    doc = db["product"].find_one_and_delete({"_id": _id}) if _id else None
    if not doc:
        raise NotFoundError("Product not found")
    logger.info("product.deleted", product_id=product_id)
    return to_str_id(doc)
