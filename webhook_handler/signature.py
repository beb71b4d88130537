"""HMAC-SHA256 signatures in the `X-Hub-Signature-256` format (`sha256=<hex>`)."""
import hashlib
import hmac
from typing import Optional

SIGNATURE_HEADER = 'X-Hub-Signature-256'
PREFIX = 'sha256='


def sign(body: bytes, secret: bytes) -> str:
    mac = hmac.new(secret, body, hashlib.sha256)
    return PREFIX + mac.hexdigest()


def verify_signature(body: bytes, signature: Optional[str], secret: bytes) -> bool:
    """Check `signature` against the HMAC of the exact raw `body`.

    Fails closed: a missing header, another algorithm or bad hex all return
    False rather than raising.
    """
    if not signature or not signature.startswith(PREFIX):
        return False
    hex_digest = signature[len(PREFIX):]
    if len(hex_digest) != hashlib.sha256().digest_size * 2:
        return False
    try:
        claimed = bytes.fromhex(hex_digest)
    except ValueError:
        return False
    expected = hmac.new(secret, body, hashlib.sha256).digest()
    return hmac.compare_digest(expected, claimed)
