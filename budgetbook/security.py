import hashlib
import hmac
import secrets

ITERATIONS = 120_000


def hash_password(password: str, salt: str = None) -> str:
    """Salted PBKDF2-SHA256 digest stored as ``<salt>$<hex digest>``."""
    if not password:
        raise ValueError("password must not be empty")
    salt = salt or secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode(), salt.encode(), ITERATIONS)
    return f"{salt}${digest.hex()}"


def verify_password(password: str, stored: str) -> bool:
    salt, sep, _ = stored.partition("$")
    if not sep or not password:
        return False
    return hmac.compare_digest(stored, hash_password(password, salt))
