"""
Credential hashing.

Hashes are stored as "pbkdf2_sha256$<iterations>$<salt>$<hash>" with a
per-credential random salt.

Invariants:
    - Plain credentials are never stored or logged
    - Verification is constant-time
    - Hashes made with older iteration counts keep verifying
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import secrets

ALGORITHM = "pbkdf2_sha256"
DEFAULT_ITERATIONS = 260000
SALT_BYTES = 16


def _b64(raw: bytes) -> str:
    return base64.b64encode(raw).decode("ascii").rstrip("=")


def hash_credential(credential: str, iterations: int = DEFAULT_ITERATIONS) -> str:
    salt = _b64(secrets.token_bytes(SALT_BYTES))
    digest = hashlib.pbkdf2_hmac("sha256", credential.encode("utf-8"), salt.encode("ascii"), iterations)
    return f"{ALGORITHM}${iterations}${salt}${_b64(digest)}"


def verify_credential(credential: str, encoded: str) -> bool:
    """Check a credential against a stored hash. Malformed hashes never match."""
    try:
        algorithm, iterations, salt, expected = encoded.split("$", 3)
        rounds = int(iterations)
    except (AttributeError, ValueError):
        return False
    if algorithm != ALGORITHM:
        return False
    digest = hashlib.pbkdf2_hmac("sha256", credential.encode("utf-8"), salt.encode("ascii"), rounds)
    return hmac.compare_digest(_b64(digest), expected)
