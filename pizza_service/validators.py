"""Field validators and password hashing shared by users, tokens and orders."""

import hashlib
import hmac
import re

from . import config
from .ids import ITEM_ID_LENGTH, ORDER_ID_LENGTH, TOKEN_ID_LENGTH

EMAIL_REGEXP = re.compile(r"^[A-Za-z0-9._]+@[A-Za-z0-9._]+\.[A-Za-z]{2,3}$", re.IGNORECASE)
MIN_PASSWORD_LENGTH = 6


def is_valid_email(value) -> bool:
    return isinstance(value, str) and EMAIL_REGEXP.match(value.strip()) is not None


def is_valid_password(value) -> bool:
    return isinstance(value, str) and len(value.strip()) >= MIN_PASSWORD_LENGTH


def _has_length(value, length: int) -> bool:
    return isinstance(value, str) and len(value.strip()) == length


def is_valid_order_id(value) -> bool:
    return _has_length(value, ORDER_ID_LENGTH)


def is_valid_token_id(value) -> bool:
    return _has_length(value, TOKEN_ID_LENGTH)


def is_valid_item_id(value) -> bool:
    return _has_length(value, ITEM_ID_LENGTH)


def hash_password(password: str, secret: str = None) -> str:
    """HMAC-SHA256 of the trimmed password, hex encoded."""
    key = (secret or config.HASHING_SECRET).encode("utf-8")
    return hmac.new(key, password.strip().encode("utf-8"), hashlib.sha256).hexdigest()


def password_matches(password: str, hashed: str) -> bool:
    return hmac.compare_digest(hash_password(password), hashed or "")
