"""Room password hashing.

New hashes use PBKDF2-HMAC-SHA256 with a random salt, stored as
``pbkdf2_sha256$<iterations>$<salt hex>$<hash hex>``. Rooms created before
salting store a bare SHA-256 hex digest; those still verify.
"""
import hashlib
import hmac
import secrets

PBKDF2_PREFIX = "pbkdf2_sha256"
PBKDF2_ITERATIONS = 100_000


def hash_password(password: str, iterations: int = PBKDF2_ITERATIONS) -> str:
    salt = secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac(
        "sha256", password.encode("utf-8"), salt.encode("utf-8"), iterations
    ).hex()
    return f"{PBKDF2_PREFIX}${iterations}${salt}${digest}"


def legacy_hash(password: str) -> str:
    return hashlib.sha256(password.encode("utf-8")).hexdigest()


def verify_password(password: str, stored: str) -> bool:
    """Check ``password`` against a PBKDF2 or legacy SHA-256 hash."""
    if not stored:
        return False
    if stored.startswith(PBKDF2_PREFIX + "$"):
        try:
            _, iterations, salt, expected = stored.split("$", 3)
            rounds = int(iterations)
        except ValueError:
            return False
        actual = hashlib.pbkdf2_hmac(
            "sha256", password.encode("utf-8"), salt.encode("utf-8"), rounds
        ).hex()
        return hmac.compare_digest(actual, expected)
    return hmac.compare_digest(legacy_hash(password), stored)
