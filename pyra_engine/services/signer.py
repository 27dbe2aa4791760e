"""
HMAC-SHA256 signing for outbound webhooks.

Receivers recompute the signature over the exact raw request body with
their copy of the secret and compare it to the X-Pyra-Signature header.
"""
import hmac
import hashlib
import secrets


SIGNATURE_HEADER = "X-Pyra-Signature"
SECRET_PREFIX = "whsec_"


def _to_bytes(value: str | bytes) -> bytes:
    return value.encode("utf-8") if isinstance(value, str) else value


def sign(secret: str, payload: str | bytes) -> str:
    """Generate the hex HMAC-SHA256 signature of a payload."""
    return hmac.new(
        _to_bytes(secret),
        _to_bytes(payload),
        hashlib.sha256
    ).hexdigest()


def verify(secret: str, payload: str | bytes, signature: str) -> bool:
    """Check a signature in constant time."""
    if not secret or not signature:
        return False
    expected = sign(secret, payload)
    return hmac.compare_digest(expected.encode("ascii"), signature.strip().lower().encode("utf-8"))


def generate_secret() -> str:
    """Generate a new webhook signing secret."""
    return f"{SECRET_PREFIX}{secrets.token_hex(24)}"
