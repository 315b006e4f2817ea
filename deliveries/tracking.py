import secrets
import string
import time
from typing import Optional

TRACKING_PREFIX = "TRK"
RANDOM_LENGTH = 4

_ALPHABET = string.digits + string.ascii_uppercase


def to_base36(number: int) -> str:
    if number < 0:
        raise ValueError("number must not be negative")
    if number == 0:
        return "0"
    digits = []
    while number:
        number, remainder = divmod(number, 36)
        digits.append(_ALPHABET[remainder])
    return "".join(reversed(digits))


def generate_tracking_code(now_ms: Optional[int] = None) -> str:
    """Prefix, base-36 millisecond clock and a random suffix, all uppercase.

    Uniqueness is best effort; the unique index on ``Delivery.tracking_code``
    decides.
    """
    if now_ms is None:
        now_ms = time.time_ns() // 1_000_000
    suffix = "".join(secrets.choice(_ALPHABET) for _ in range(RANDOM_LENGTH))
    return f"{TRACKING_PREFIX}{to_base36(now_ms)}{suffix}"


def normalize_tracking_code(value) -> str:
    return str(value or "").strip().upper()
