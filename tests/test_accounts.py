import pytest

import accounts
import carts
from errors import BadRequestError, NotFoundError
from security import hash_password


def _matches(password, password_hash):
    salt_hex, _ = password_hash.split("$", 1)
    return hash_password(password, bytes.fromhex(salt_hex)) == password_hash


def test_client_password_is_hashed_and_hidden(db, client_doc):
    assert "password_hash" not in client_doc
    assert "password" not in client_doc
    assert client_doc["email"] == "maker@printshop.io"

    stored = db["client"].find_one({"username": "maker"})
    assert stored["password_hash"] != "secret1"
    assert _matches("secret1", stored["password_hash"])


def test_same_password_gets_different_salts(db, client_doc):
    other = accounts.create_client(db, {"username": "other", "email": "other@printshop.io", "password": "secret1"})

    hashes = {d["password_hash"] for d in db["client"].find()}
    assert len(hashes) == 2
    assert other["username"] == "other"


def test_duplicate_client(db, client_doc):
    with pytest.raises(BadRequestError, match="already exists"):
        accounts.create_client(db, {"username": "someone", "email": "maker@printshop.io", "password": "secret1"})


def test_client_password_change_rehashes(db, client_doc):
    updated = accounts.update_client(db, client_doc["id"], {"password": "new-secret", "address": "1 Filament Rd"})

    assert updated["address"] == "1 Filament Rd"
    assert "password_hash" not in updated
    stored = db["client"].find_one({"username": "maker"})
    assert _matches("new-secret", stored["password_hash"])
    assert not _matches("secret1", stored["password_hash"])


def test_client_update_rejects_taken_username(db, client_doc):
    accounts.create_client(db, {"username": "other", "email": "other@printshop.io", "password": "secret2"})

    with pytest.raises(BadRequestError):
        accounts.update_client(db, client_doc["id"], {"username": "other"})


def test_admin_crud(db):
    admin = accounts.create_admin(db, {"username": "root", "password": "hunter22"})
    assert "password_hash" not in admin

    with pytest.raises(BadRequestError, match="already exists"):
        accounts.create_admin(db, {"username": "root", "password": "another1"})

    renamed = accounts.update_admin(db, admin["id"], {"username": "boss"})
    assert renamed["username"] == "boss"
    assert [a["username"] for a in accounts.list_admins(db)] == ["boss"]

    accounts.delete_admin(db, admin["id"])
    with pytest.raises(NotFoundError, match="Admin not found"):
        accounts.get_admin(db, admin["id"])


def test_deleting_client_keeps_cart(db, client_doc):
    carts.get_cart(db, client_doc["id"])

    accounts.delete_client(db, client_doc["id"])

    assert db["cart"].count_documents({"client_id": client_doc["id"]}) == 1
    with pytest.raises(NotFoundError):
        accounts.get_client(db, client_doc["id"])
