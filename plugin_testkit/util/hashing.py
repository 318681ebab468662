"""
Hashing utilities.
"""

import hashlib


def sha256_fields(*fields: str) -> str:
    """Compute SHA256 over several strings, unambiguously separated."""
    h = hashlib.sha256()
    for field in fields:
        encoded = field.encode()
        h.update(str(len(encoded)).encode())
        h.update(b":")
        h.update(encoded)
    return h.hexdigest()
