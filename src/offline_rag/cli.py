from __future__ import annotations

import argparse
import asyncio
from pathlib import Path
from typing import List

from offline_rag.config import core, rag
from offline_rag.memory.rag import NO_CONTEXT, MemoryService
from offline_rag.memory.rag.inbox import process_inbox
from offline_rag.memory.rag.vector import meets_threshold


def _positive_int(value: str) -> int:
    ivalue = int(value)
    if ivalue <= 0:
        raise argparse.ArgumentTypeError("value must be a positive integer")
    return ivalue


def _add_collection(cmd: argparse.ArgumentParser) -> None:
    cmd.add_argument(
        "--collection",
        "-c",
        type=str,
        default=None,
        help="Collection name (defaults to core.DEFAULT_COLLECTION).",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="python -m offline_rag",
        description="Offline document memory: ingest files and ask grounded questions.",
    )
    parser.add_argument(
        "--db",
        type=Path,
        default=None,
        help="SQLite database path (overrides rag.SQL_DB_PATH).",
    )
    subparsers = parser.add_subparsers(
        dest="command", metavar="<command>", required=True
    )

    ingest_cmd = subparsers.add_parser("ingest", help="Chunk, embed and store text files.")
    ingest_cmd.add_argument("files", nargs="+", type=Path, help="Files to ingest.")
    _add_collection(ingest_cmd)
    ingest_cmd.add_argument(
        "--category",
        type=str,
        default=None,
        help="Category label for every fragment (defaults to each file name).",
    )

    ask_cmd = subparsers.add_parser("ask", help="Answer a question from a collection.")
    ask_cmd.add_argument("question", type=str)
    _add_collection(ask_cmd)
    ask_cmd.add_argument(
        "--no-llm",
        action="store_true",
        help="Print the retrieved context instead of asking the local model.",
    )
    ask_cmd.add_argument("--top-k", type=_positive_int, default=None)
    ask_cmd.add_argument("--min-score", type=float, default=None)
    ask_cmd.add_argument(
        "--category",
        dest="categories",
        action="append",
        default=None,
        help="Only use fragments in this category (repeatable).",
    )
    ask_cmd.add_argument(
        "--detect-categories",
        dest="detect",
        action="store_true",
        default=None,
        help="Narrow to the stored categories the question mentions.",
    )

    stats_cmd = subparsers.add_parser("stats", help="Fragment and index counts.")
    _add_collection(stats_cmd)

    diag_cmd = subparsers.add_parser(
        "diagnose", help="Show the raw best scores for a query (ignores the threshold)."
    )
    diag_cmd.add_argument("query", type=str)
    _add_collection(diag_cmd)
    diag_cmd.add_argument("-n", type=_positive_int, default=10, help="Rows to show.")

    inbox_cmd = subparsers.add_parser("inbox", help="Ingest and archive files in the inbox folder.")
    _add_collection(inbox_cmd)

    reembed_cmd = subparsers.add_parser("reembed", help="Embed pending fragments again.")
    _add_collection(reembed_cmd)
    reembed_cmd.add_argument(
        "--all",
        action="store_true",
        help="Re-embed every fragment (after switching embedding backend).",
    )

    clear_cmd = subparsers.add_parser("clear", help="Delete every fragment in a collection.")
    _add_collection(clear_cmd)

    subparsers.add_parser("collections", help="List stored collections.")

    categories_cmd = subparsers.add_parser("categories", help="List categories in a collection.")
    _add_collection(categories_cmd)

    return parser


async def _ingest(
    service: MemoryService, collection: str, files: List[Path], category: str | None = None
) -> int:
    status = 0
    for path in files:
        try:
            text = path.read_text(encoding="utf-8", errors="replace")
        except OSError as exc:
            print(f"✗ {path}: {exc}")
            status = 1
            continue
        report = await service.ingest_document(path.name, text, collection, category)
        mark = "✓" if report.ok and report.fragments else "⚠"
        print(
            f"{mark} {path.name}: {report.fragments} fragments, "
            f"{report.embedded} embedded, {len(report.pending)} pending, "
            f"{len(report.persist_failed)} not saved"
        )
        if not report.persisted:
            status = 1
    return status


async def _ask(service: MemoryService, collection: str, args: argparse.Namespace) -> int:
    overrides = dict(
        top_k=args.top_k,
        min_score=args.min_score,
        categories=args.categories,
        detect=args.detect,
    )
    if args.no_llm:
        context = await service.answer_query(collection, args.question, **overrides)
        print(core.REFUSAL_MESSAGE if context is NO_CONTEXT else context)
        return 0

    from offline_rag.chat import respond

    print(await respond(service, collection, args.question, **overrides))
    return 0


async def _run(service: MemoryService, args: argparse.Namespace) -> int:
    collection = getattr(args, "collection", None) or core.DEFAULT_COLLECTION

    if args.command == "ingest":
        return await _ingest(service, collection, args.files, args.category)

    if args.command == "ask":
        return await _ask(service, collection, args)

    if args.command == "stats":
        await service.index_for(collection)
        s = await service.stats(collection)
        print(f"Collection:  {s.collection_name}")
        print(f"Fragments:   {s.total}")
        print(f"Embedded:    {s.embedded}")
        print(f"Pending:     {s.pending}")
        print(f"Indexed:     {s.indexed}")
        print(f"Rejected:    {s.rejected}")
        print(f"Backend:     {service.embedder.model_id} (dim={service.dim})")
        return 0

    if args.command == "diagnose":
        lines = await service.top_scores(collection, args.query, args.n)
        if not lines:
            print("(collection is empty)")
            return 0
        threshold = service.gate.min_score
        for line in lines:
            flag = "✓" if meets_threshold(line.score, threshold) else " "
            print(f"{flag} {line.score:.4f}  [{line.source_name}]  {line.preview}")
        print(f"threshold={threshold:.3f}")
        return 0

    if args.command == "inbox":
        report = await process_inbox(service, collection, core.INBOX_DIR, core.ARCHIVE_DIR)
        print(report.message)
        for name, err in report.failed:
            print(f"✗ {name}: {err}")
        return 1 if report.failed else 0

    if args.command == "reembed":
        report = await service.reembed(collection, only_pending=not args.all)
        print(
            f"Re-embedded {report.embedded}/{report.fragments} fragments "
            f"({len(report.pending)} still pending)"
        )
        return 0

    if args.command == "clear":
        removed = await service.clear_collection(collection)
        print(f"Removed {removed} fragments from {collection}")
        return 0

    if args.command == "collections":
        for name in await service.repo.list_collections():
            print(name)
        return 0

    if args.command == "categories":
        for name in await service.categories(collection):
            print(name)
        return 0

    return 2


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    service = MemoryService.open(str(args.db) if args.db else rag.SQL_DB_PATH)
    try:
        return asyncio.run(_run(service, args))
    finally:
        service.close()


__all__ = ["main", "build_parser"]
