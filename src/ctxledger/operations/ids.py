"""Summary identifier minting.

Summary ids are a fixed prefix followed by 16 lowercase hex characters, e.g.
``sum_3f9a0c1d2e4b5a67``. They are opaque and globally unique; uniqueness is
checked against the store by the caller, which regenerates on collision.
"""

from __future__ import annotations

import hashlib
import os
import re
import time
from collections.abc import Callable

SUMMARY_ID_HEX_LENGTH = 16

IdGenerator = Callable[[], str]


def make_summary_id(prefix: str = "sum_", content: str = "") -> str:
    """
    Mint a new summary id.

    The hex part is the head of a SHA-256 over the content, the current
    nanosecond clock and 8 random bytes, so two calls never agree in practice
    even for identical content.

    Args:
        prefix: Id prefix (``"sum_"`` by default).
        content: Optional summary content mixed into the digest.
    """
    digest = hashlib.sha256()
    digest.update(content.encode("utf-8"))
    digest.update(str(time.time_ns()).encode("ascii"))
    digest.update(os.urandom(8))
    return f"{prefix}{digest.hexdigest()[:SUMMARY_ID_HEX_LENGTH]}"


def summary_id_generator(prefix: str = "sum_") -> IdGenerator:
    """Return a zero-argument generator minting ids with ``prefix``."""

    def _generate() -> str:
        return make_summary_id(prefix)

    return _generate


def is_summary_id(value: str, prefix: str = "sum_") -> bool:
    """True if ``value`` is ``prefix`` followed by exactly 16 lowercase hex characters."""
    pattern = rf"{re.escape(prefix)}[0-9a-f]{{{SUMMARY_ID_HEX_LENGTH}}}"
    return re.fullmatch(pattern, value) is not None


def content_fingerprint(content: str) -> str:
    """SHA-256 hex digest of summary content, used to detect repeated transplants."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()
