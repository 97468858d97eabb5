"""
ctxledger command line.

Every mutating command is a dry run unless ``--apply`` is given; the dry run
prints the same report the real run would.

Usage::

    ctxledger --db ~/.openclaw/lcm.db dissolve 42 --summary-id sum_3f9a0c1d2e4b5a67
    ctxledger dissolve 42 --summary-id sum_3f9a0c1d2e4b5a67 --apply --purge
    ctxledger transplant 41 42 --apply
    ctxledger graph 42
    ctxledger files agent-session-7
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from collections.abc import Sequence

import structlog

from ctxledger.errors import LedgerError
from ctxledger.graph.reader import GraphReader, SessionCounts, SummaryGraph, SummaryRow
from ctxledger.models.config import LedgerConfig, StoreConfig
from ctxledger.models.ledger import LargeFile
from ctxledger.models.reports import DissolveReport, TransplantReport
from ctxledger.operations.dissolve import DissolveEngine
from ctxledger.operations.transplant import TransplantEngine
from ctxledger.store.ledger import LedgerStore

DB_ENV_VAR = "CTXLEDGER_DB"

# ── Report formatting ─────────────────────────────────────────────────────────


def format_dissolve_report(report: DissolveReport) -> str:
    lines = [
        f"Dissolve {report.summary_id} ({report.kind}, d{report.depth}, "
        f"{report.token_count}t) at context ordinal {report.target_ordinal}",
        f"Restore {len(report.parents)} parent summaries:",
    ]
    for parent in report.parents:
        lines.append(
            f"  [{parent.edge_ordinal}] {parent.summary_id} ({parent.kind}, d{parent.depth}, "
            f"{parent.token_count}t) {parent.preview}"
        )
    lines.append("")
    lines.append(
        f"Token impact: {report.token_count}t condensed -> "
        f"{report.restored_token_count}t restored ({report.token_delta:+d}t)"
    )
    if report.shift > 0:
        lines.append(
            f"Ordinal shift: {report.shifted_item_count} items after ordinal "
            f"{report.target_ordinal} shift by +{report.shift}"
        )
    else:
        lines.append("Ordinal shift: none (single parent)")
    lines.append(
        f"Parents occupy ordinals {report.inserted_ordinal_start}-{report.inserted_ordinal_end}; "
        f"context items {report.items_before} -> {report.items_after}"
    )
    if report.purge_requested:
        lines.append(f"Purge: summary record {report.summary_id} will be deleted")

    lines.append("")
    if report.applied:
        if report.purged:
            lines.append(f"Purged summary record {report.summary_id}.")
        lines.append(f"Done. Context now has {report.items_after} items.")
    else:
        lines.append("Dry run. Use --apply to execute.")
    return "\n".join(lines)


def format_transplant_report(report: TransplantReport) -> str:
    lines = [
        f"Transplant conversation {report.source_conversation_id} -> "
        f"{report.target_conversation_id}",
        f"  Top-level summaries : {report.top_level_count}",
        f"  Closure size        : {report.closure_size}",
    ]
    for depth, count in report.closure_by_depth.items():
        lines.append(f"    depth {depth:<3}: {count}")
    lines.append(f"  Token overhead      : {report.token_overhead}t")
    lines.append(
        f"  Target items        : {report.target_items_before} -> {report.target_items_after}"
    )
    lines.append("")
    if report.applied:
        for old_id in report.top_level_summary_ids:
            lines.append(f"  {old_id} -> {report.id_map[old_id]}")
        lines.append(
            f"Done. Copied {report.closure_size} summaries; target context now has "
            f"{report.target_items_after} items."
        )
    else:
        lines.append("Dry run. Use --apply to execute.")
    return "\n".join(lines)


def format_graph(graph: SummaryGraph, rows: Sequence[SummaryRow]) -> str:
    if not graph.nodes:
        return f"Conversation {graph.conversation_id} has no summaries."
    lines = [
        f"Conversation {graph.conversation_id}: {len(graph.nodes)} summaries, "
        f"{len(graph.roots)} roots"
    ]
    if graph.roots_fallback:
        lines.append("warning: no root found (cyclic graph); showing every node as a root")
    for row in rows:
        node = graph.nodes[row.summary_id]
        preview = " ".join(node.content.split())[:60]
        lines.append(
            f"{'  ' * row.depth}{node.id} ({node.kind}, d{node.depth}, "
            f"{node.token_count}t) {preview}"
        )
    return "\n".join(lines)


def format_large_files(session_id: str, files: Sequence[LargeFile], counts: SessionCounts) -> str:
    lines = [
        f"Session {session_id}: {counts.summaries} summaries, {counts.files} large files"
    ]
    if not files:
        lines.append("No large files in the current conversation.")
    for large_file in files:
        lines.append(
            f"  {large_file.file_id} {large_file.display_name} "
            f"({large_file.mime_type or 'unknown'}, {large_file.byte_size} bytes) "
            f"{large_file.created_at}"
        )
        if large_file.exploration_summary:
            lines.append(f"    {' '.join(large_file.exploration_summary.split())[:100]}")
    return "\n".join(lines)


# ── CLI ───────────────────────────────────────────────────────────────────────


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="ctxledger",
        description="Structural maintenance of a context ledger database.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
examples:
  # Preview expanding a condensed summary back into its parents
  ctxledger dissolve 42 --summary-id sum_3f9a0c1d2e4b5a67

  # Carry a conversation's compacted history into a fresh conversation
  ctxledger transplant 41 42 --apply
""",
    )
    p.add_argument(
        "--db",
        default=os.environ.get(DB_ENV_VAR, StoreConfig().db_path),
        help=f"SQLite ledger database (default: ${DB_ENV_VAR} or {StoreConfig().db_path})",
    )
    p.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Log engine events to stderr (-v info, -vv debug)",
    )
    sub = p.add_subparsers(dest="command", required=True)

    dissolve = sub.add_parser("dissolve", help="Replace a condensed summary with its parents")
    dissolve.add_argument("conversation_id", type=int)
    dissolve.add_argument("--summary-id", required=True, dest="summary_id")
    dissolve.add_argument("--apply", action="store_true", help="Execute (default: dry run)")
    dissolve.add_argument(
        "--purge",
        action="store_true",
        help="Also delete the summary record (refused while anything still references it)",
    )

    transplant = sub.add_parser(
        "transplant", help="Copy a conversation's summary footprint into another"
    )
    transplant.add_argument("source_id", type=int)
    transplant.add_argument("target_id", type=int)
    transplant.add_argument("--apply", action="store_true", help="Execute (default: dry run)")

    graph = sub.add_parser("graph", help="Print a conversation's summary DAG")
    graph.add_argument("conversation_id", type=int)

    files = sub.add_parser("files", help="List a session's large files")
    files.add_argument("session_id")
    return p


def _configure_logging(verbosity: int) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(sys.stderr),
    )


async def run(args: argparse.Namespace) -> str:
    """Execute one parsed command and return its printable output."""
    config = LedgerConfig(store=StoreConfig(db_path=args.db))
    store = LedgerStore(config.store)
    await store.initialize()
    try:
        if args.command == "dissolve":
            dissolver = DissolveEngine(store, config=config)
            if args.apply:
                report = await dissolver.apply(
                    args.conversation_id, args.summary_id, purge=args.purge
                )
            else:
                report = await dissolver.plan(
                    args.conversation_id, args.summary_id, purge=args.purge
                )
            return format_dissolve_report(report)

        if args.command == "transplant":
            transplanter = TransplantEngine(store, config=config)
            if args.apply:
                result = await transplanter.apply(args.source_id, args.target_id)
            else:
                result = await transplanter.plan(args.source_id, args.target_id)
            return format_transplant_report(result)

        reader = GraphReader(store)
        if args.command == "files":
            large_files = await reader.load_large_files(args.session_id)
            counts = await reader.load_session_counts([args.session_id])
            return format_large_files(args.session_id, large_files, counts[args.session_id])

        graph = await reader.load_graph(args.conversation_id)
        return format_graph(graph, reader.flatten(graph))
    finally:
        await store.close()


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    _configure_logging(args.verbose)
    try:
        output = asyncio.run(run(args))
    except LedgerError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    print(output)
    return 0


if __name__ == "__main__":
    sys.exit(main())
