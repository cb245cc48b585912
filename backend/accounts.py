"""
Client and admin records. Passwords are only ever stored as salted hashes
and `password_hash` is stripped from everything returned.
"""
from typing import List

from pydantic import ValidationError
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError
import structlog

from database import create_document, find_by_id, get_documents, now, oid, to_str_id
from errors import BadRequestError, NotFoundError, from_validation
from schemas import Admin, Client
from security import hash_password

logger = structlog.get_logger(__name__)


def _validated(schema, data: dict):
    try:
        return schema(**data)
    except ValidationError as e:
        raise from_validation(e)


def _with_hash(data: dict) -> dict:
    data = dict(data)
    password = data.pop("password", None)
    if password is not None:
        data["password_hash"] = hash_password(password)
    return data


# ---------- Clients ----------

def get_client_doc(db, client_id: str) -> dict:
    client = find_by_id(db, "client", client_id)
    if not client:
        raise NotFoundError("Client not found")
    return client


def _client_taken(db, username: str, email: str, exclude_id=None) -> bool:
    filt = {"$or": [{"username": username}, {"email": email}]}
    if exclude_id is not None:
        filt["_id"] = {"$ne": exclude_id}
    return db["client"].find_one(filt) is not None


def create_client(db, data: dict) -> dict:
    client = _validated(Client, _with_hash(data))
    if _client_taken(db, client.username, client.email):
        raise BadRequestError("Client with this email or username already exists")
    try:
        cid = create_document(db, "client", client)
    except DuplicateKeyError:
        raise BadRequestError("Client with this email or username already exists")
    logger.info("client.created", client_id=cid, username=client.username)
    return to_str_id(db["client"].find_one({"_id": oid(cid)}))


def list_clients(db) -> List[dict]:
    return [to_str_id(d) for d in get_documents(db, "client")]


def get_client(db, client_id: str) -> dict:
    return to_str_id(get_client_doc(db, client_id))


def update_client(db, client_id: str, changes: dict) -> dict:
    current = get_client_doc(db, client_id)
    merged = {k: v for k, v in current.items() if k in Client.model_fields}
    merged.update(_with_hash(changes))
    client = _validated(Client, merged)
    if _client_taken(db, client.username, client.email, exclude_id=current["_id"]):
        raise BadRequestError("Username or email already in use by another client")
    fields = client.model_dump()
    fields["updated_at"] = now()
    doc = db["client"].find_one_and_update(
        {"_id": current["_id"]}, {"$set": fields}, return_document=ReturnDocument.AFTER
    )
    logger.info("client.updated", client_id=client_id, password_changed="password" in changes)
    return to_str_id(doc)


def delete_client(db, client_id: str) -> dict:
    # cart and orders are left in place
    _id = oid(client_id)
    doc = db["client"].find_one_and_delete({"_id": _id}) if _id else None
    if not doc:
        raise NotFoundError("Client not found")
    logger.info("client.deleted", client_id=client_id)
    return to_str_id(doc)


# ---------- Admins ----------

def create_admin(db, data: dict) -> dict:
    admin = _validated(Admin, _with_hash(data))
    if db["admin"].find_one({"username": admin.username}):
        raise BadRequestError("Admin with this username already exists")
    try:
        aid = create_document(db, "admin", admin)
    except DuplicateKeyError:
        raise BadRequestError("Admin with this username already exists")
    logger.info("admin.created", admin_id=aid, username=admin.username)
    return to_str_id(db["admin"].find_one({"_id": oid(aid)}))


def list_admins(db) -> List[dict]:
    return [to_str_id(d) for d in get_documents(db, "admin")]


def get_admin(db, admin_id: str) -> dict:
    doc = find_by_id(db, "admin", admin_id)
    if not doc:
        raise NotFoundError("Admin not found")
    return to_str_id(doc)


def update_admin(db, admin_id: str, changes: dict) -> dict:
    current = find_by_id(db, "admin", admin_id)
    if not current:
        raise NotFoundError("Admin not found")
    merged = {k: v for k, v in current.items() if k in Admin.model_fields}
    merged.update(_with_hash(changes))
    admin = _validated(Admin, merged)
    if admin.username != current["username"] and db["admin"].find_one(
        {"username": admin.username, "_id": {"$ne": current["_id"]}}
    ):
        raise BadRequestError("Username already in use by another admin")
    fields = admin.model_dump()
    fields["updated_at"] = now()
    doc = db["admin"].find_one_and_update(
        {"_id": current["_id"]}, {"$set": fields}, return_document=ReturnDocument.AFTER
    )
    logger.info("admin.updated", admin_id=admin_id, password_changed="password" in changes)
    return to_str_id(doc)


def delete_admin(db, admin_id: str) -> dict:
    _id = oid(admin_id)
    doc = db["admin"].find_one_and_delete({"_id": _id}) if _id else None
    if not doc:
        raise NotFoundError("Admin not found")
    logger.info("admin.deleted", admin_id=admin_id)
    return to_str_id(doc)
