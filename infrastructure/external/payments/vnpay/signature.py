"""
VNPay parameter signing.

The canonical form is the gateway's own: drop empty values and the signature
fields, sort keys by code point, percent-encode (space as %20), join k=v with &.
The HMAC is computed over the UTF-8 bytes of that string and rendered as
lowercase hex.
"""
from __future__ import annotations

import hashlib
import hmac
from typing import Any, Mapping, Optional
from urllib.parse import quote

SECURE_HASH_FIELD = "vnp_SecureHash"
SECURE_HASH_TYPE_FIELD = "vnp_SecureHashType"
SIGNATURE_FIELDS = frozenset({SECURE_HASH_FIELD, SECURE_HASH_TYPE_FIELD})

DEFAULT_ALGORITHM = "sha512"
_ALGORITHMS = {
    "sha256": hashlib.sha256,
    "sha512": hashlib.sha512,
}


def encode_component(value: Any) -> str:
    """Percent-encode one key or value; nothing is left unescaped but RFC 3986 unreserved chars."""
    return quote(str(value), safe="")


def canonicalize(params: Mapping[str, Any]) -> str:
    """Deterministic ``k=v&k=v`` string used for signing and for transport."""
    items = [
        (key, value)
        for key, value in params.items()
        if key not in SIGNATURE_FIELDS and value is not None and str(value) != ""
    ]
    items.sort(key=lambda kv: kv[0])
    return "&".join(f"{encode_component(k)}={encode_component(v)}" for k, v in items)


def _digest(algorithm: str):
    try:
        return _ALGORITHMS[algorithm.lower()]
    except KeyError:
        raise ValueError(f"Unsupported hash algorithm: {algorithm}") from None


def sign(canonical: str, secret: str, algorithm: str = DEFAULT_ALGORITHM) -> str:
    return hmac.new(
        secret.encode("utf-8"),
        canonical.encode("utf-8"),
        _digest(algorithm),
    ).hexdigest()


def verify(
    canonical: str,
    secret: str,
    candidate: Optional[str],
    algorithm: str = DEFAULT_ALGORITHM,
) -> bool:
    """Constant-time comparison of ``candidate`` against a fresh signature."""
    if not candidate:
        return False
    expected = sign(canonical, secret, algorithm)
    return hmac.compare_digest(
        expected.encode("ascii"),
        candidate.strip().lower().encode("utf-8"),
    )
