"""ctxledger persistence layer."""

from ctxledger.store.ledger import (
    DanglingReferenceError,
    DuplicateIDError,
    LedgerStore,
    LedgerStoreError,
    assert_contiguous_ordinals,
    insert_context_item,
    insert_message_edge_row,
    insert_parent_edge_row,
    insert_summary_row,
    shift_context_ordinals,
    touch_conversation,
)

__all__ = [
    "LedgerStore",
    "LedgerStoreError",
    "DuplicateIDError",
    "DanglingReferenceError",
    "shift_context_ordinals",
    "assert_contiguous_ordinals",
    "insert_context_item",
    "insert_message_edge_row",
    "insert_parent_edge_row",
    "insert_summary_row",
    "touch_conversation",
]
