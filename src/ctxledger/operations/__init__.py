"""Structural maintenance operations on the context ledger."""

from ctxledger.operations.dissolve import DissolveEngine
from ctxledger.operations.ids import (
    IdGenerator,
    content_fingerprint,
    is_summary_id,
    make_summary_id,
    summary_id_generator,
)
from ctxledger.operations.transplant import TransplantEngine

__all__ = [
    "DissolveEngine",
    "TransplantEngine",
    "IdGenerator",
    "content_fingerprint",
    "is_summary_id",
    "make_summary_id",
    "summary_id_generator",
]
