"""Random ownership tokens."""

from __future__ import annotations

import base64
import secrets


DEFAULT_TOKEN_SIZE = 16


def random_token(size: int = DEFAULT_TOKEN_SIZE) -> str:
    """Return ``size`` random bytes as unpadded URL-safe base64.

    A fresh buffer is drawn on every call, so concurrent callers never share
    scratch state.
    """
    raw = secrets.token_bytes(size)
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def token_length(size: int = DEFAULT_TOKEN_SIZE) -> int:
    """Length in characters of a token produced by :func:`random_token`."""
    return (size * 8 + 5) // 6
