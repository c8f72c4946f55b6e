"""Shared-token verification."""

import hmac
from typing import Optional


def verify_token(presented: Optional[str], secret: str) -> bool:
    """Return True when the presented token equals the configured secret.

    An empty secret never authenticates anyone, so an unconfigured server
    accepts connections but delivers no events.
    """
    if not presented or not secret:
        return False
    return hmac.compare_digest(presented.encode(), secret.encode())
