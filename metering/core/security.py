import hashlib
import hmac


def verify_internal_token(provided: str | None, expected: str) -> bool:
    """Constant-time comparison of the internal API token. Empty expected token rejects everything."""
    if not expected or not provided:
        return False
    return hmac.compare_digest(
        hashlib.sha256(provided.encode("utf-8")).digest(),
        hashlib.sha256(expected.encode("utf-8")).digest(),
    )
