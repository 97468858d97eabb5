"""ctxledger data models."""

from ctxledger.models.config import LedgerConfig, StoreConfig, TransplantConfig
from ctxledger.models.ledger import (
    ContextEntry,
    ContextItem,
    ContextItemType,
    Conversation,
    LargeFile,
    Message,
    Summary,
    SummaryKind,
    SummaryMessageEdge,
    SummaryParentEdge,
    utc_now,
)
from ctxledger.models.reports import DissolveReport, ParentSummaryInfo, TransplantReport

__all__ = [
    # Config
    "LedgerConfig",
    "StoreConfig",
    "TransplantConfig",
    # Entities
    "Conversation",
    "Message",
    "Summary",
    "SummaryKind",
    "SummaryParentEdge",
    "SummaryMessageEdge",
    "ContextItem",
    "ContextItemType",
    "ContextEntry",
    "LargeFile",
    "utc_now",
    # Reports
    "DissolveReport",
    "ParentSummaryInfo",
    "TransplantReport",
]
