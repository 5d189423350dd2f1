import hashlib
import hmac
import secrets

API_KEY_PREFIX = "fma_"
_KEY_START_LENGTH = 8


def hash_api_key(raw_key: str) -> str:
    return hashlib.sha256(raw_key.encode("utf-8")).hexdigest()


def generate_api_key() -> str:
    return f"{API_KEY_PREFIX}{secrets.token_urlsafe(32)}"


def key_start(raw_key: str) -> str:
    return raw_key[: len(API_KEY_PREFIX) + _KEY_START_LENGTH]


def secrets_match(provided: str | None, expected: str) -> bool:
    if provided is None:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))
