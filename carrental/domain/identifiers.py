"""Human-readable identifiers: booking references and agency slugs."""
import re
import secrets
import string
import time
from typing import Optional

BASE36_ALPHABET = string.digits + string.ascii_uppercase

_SLUG_SEPARATORS = re.compile(r"[^a-z0-9]+")


def to_base36(value: int) -> str:
    """Encode a non-negative integer in upper-case base 36."""
    if value < 0:
        raise ValueError("value must be non-negative")
    if value == 0:
        return "0"
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(BASE36_ALPHABET[remainder])
    return "".join(reversed(digits))


def generate_booking_reference(prefix: str = "VB", now_ms: Optional[int] = None) -> str:
    """
    Build a reference like ``VB-LZ3K8Q1A-7F2K9X``.

    Epoch milliseconds in base 36 followed by six random base-36 characters.
    Uniqueness is finally enforced by the store's unique index.
    """
    if now_ms is None:
        now_ms = time.time_ns() // 1_000_000
    suffix = "".join(secrets.choice(BASE36_ALPHABET) for _ in range(6))
    return f"{prefix}-{to_base36(now_ms)}-{suffix}".upper()


def slugify(name: str) -> str:
    """
    Lower-case the name, collapse every run of non-alphanumerics to ``-``
    and strip leading/trailing dashes.

    >>> slugify("  Atlas Cars & Co. ")
    'atlas-cars-co'
    """
    return _SLUG_SEPARATORS.sub("-", name.lower()).strip("-")
