"""
ctxledger: transactional maintenance of an agent's context ledger.

Primary entry points::

    from ctxledger import LedgerStore, StoreConfig, DissolveEngine

    store = LedgerStore(StoreConfig(db_path="~/.openclaw/lcm.db"))
    await store.initialize()
    report = await DissolveEngine(store).plan(conversation_id, "sum_3f9a0c1d2e4b5a67")
"""

from ctxledger.errors import (
    ConversationNotFoundError,
    LedgerError,
    LedgerIntegrityError,
    NotCondensableError,
    NotFoundError,
    NothingToDissolveError,
    NothingToTransplantError,
    NotInActiveContextError,
    PreconditionError,
    PurgeBlockedError,
    RowCountMismatchError,
    SameConversationError,
    SummaryNotFoundError,
    TransplantConflictError,
)
from ctxledger.events.bus import EventBus, LedgerEvent
from ctxledger.graph.reader import GraphNode, GraphReader, SessionCounts, SummaryGraph, SummaryRow
from ctxledger.models import (
    ContextEntry,
    ContextItem,
    Conversation,
    DissolveReport,
    LargeFile,
    LedgerConfig,
    Message,
    ParentSummaryInfo,
    StoreConfig,
    Summary,
    SummaryMessageEdge,
    SummaryParentEdge,
    TransplantConfig,
    TransplantReport,
)
from ctxledger.operations import DissolveEngine, TransplantEngine, make_summary_id
from ctxledger.store.ledger import LedgerStore

__version__ = "0.1.0"

__all__ = [
    # Store
    "LedgerStore",
    # Engines
    "DissolveEngine",
    "TransplantEngine",
    "make_summary_id",
    # Graph
    "GraphReader",
    "GraphNode",
    "SummaryGraph",
    "SummaryRow",
    "SessionCounts",
    # Config
    "LedgerConfig",
    "StoreConfig",
    "TransplantConfig",
    # Models
    "Conversation",
    "Message",
    "Summary",
    "SummaryParentEdge",
    "SummaryMessageEdge",
    "ContextItem",
    "ContextEntry",
    "LargeFile",
    "DissolveReport",
    "ParentSummaryInfo",
    "TransplantReport",
    # Events
    "EventBus",
    "LedgerEvent",
    # Errors
    "LedgerError",
    "NotFoundError",
    "ConversationNotFoundError",
    "SummaryNotFoundError",
    "PreconditionError",
    "NotInActiveContextError",
    "NotCondensableError",
    "NothingToDissolveError",
    "PurgeBlockedError",
    "RowCountMismatchError",
    "SameConversationError",
    "NothingToTransplantError",
    "TransplantConflictError",
    "LedgerIntegrityError",
]
