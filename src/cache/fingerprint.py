# src/cache/fingerprint.py — v2
"""Cache key derivation for try-on results.

Keys are built from a fast, non-cryptographic 32-bit rolling hash of the
product image identity and of the user photo identity. Collisions are an
accepted risk; what matters is that equal inputs always give equal keys, in
any process, on any platform.
"""

from __future__ import annotations

from tryon_engine.core.models import ImageRef

_DIGITS = "0123456789abcdefghijklmnopqrstuvwxyz"


def rolling_hash(text: str) -> str:
    """Return ``h = h*31 + code_unit`` over ``text``, as signed 32-bit base-36.

    Iterates UTF-16 code units so non-BMP characters hash the same way a
    browser-side implementation of the same recurrence would.
    """
    h = 0
    for unit in _utf16_units(text):
        h = _to_int32(h * 31 + unit)
    return _base36(h)


def compute_cache_key(product_image: ImageRef | str, user_photo: ImageRef | str) -> str:
    """Build ``hash(product) + "_" + hash(user_photo)``."""
    return f"{rolling_hash(_identity(product_image))}_{rolling_hash(_identity(user_photo))}"


def _identity(ref: ImageRef | str) -> str:
    return ref.uri if isinstance(ref, ImageRef) else ref


def _utf16_units(text: str) -> list[int]:
    raw = text.encode("utf-16-le", errors="surrogatepass")
    return [int.from_bytes(raw[i : i + 2], "little") for i in range(0, len(raw), 2)]


def _to_int32(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - 0x100000000 if value & 0x80000000 else value


def _base36(value: int) -> str:
    if value == 0:
        return "0"
    sign = "-" if value < 0 else ""
    value = abs(value)
    digits: list[str] = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_DIGITS[rem])
    return sign + "".join(reversed(digits))
