import hashlib
import os

ITERATIONS = 100_000


def hash_password(password: str, salt: bytes = None) -> str:
    # Stored as "<salt hex>$<digest hex>"
    salt = salt or os.urandom(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode(), salt, ITERATIONS)
    return f"{salt.hex()}${digest.hex()}"

