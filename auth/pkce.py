from __future__ import annotations

import base64
import hashlib
import secrets


def _b64url(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("utf-8").rstrip("=")


def generate_code_verifier() -> str:
    """Return 32 random bytes as unpadded base64url (43 characters)."""
    return _b64url(secrets.token_bytes(32))


def generate_code_challenge(verifier: str) -> str:
    digest = hashlib.sha256(verifier.encode("utf-8")).digest()
    return _b64url(digest)


def generate_state() -> str:
    return secrets.token_hex(16)
