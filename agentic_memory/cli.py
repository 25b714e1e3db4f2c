"""
Command-line interface for the agentic memory store.
"""

import argparse
import json
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from .config import load_config
from .errors import MemorySystemError
from .manager import MemoryManager
from .types import Memory, MemoryType, SearchOptions


def setup_logging(verbose: bool = False):
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="agentic-memory",
        description="Agentic Memory - inspect and maintain the persistent memory store",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Show database statistics
  agentic-memory stats

  # Search memories, including private ones
  agentic-memory search "jwt auth" --limit 5 --include-private

  # Delete memories older than 30 days and keep at most 5000
  agentic-memory prune --days 30 --max 5000

  # Embed memories that have no embedding yet
  agentic-memory backfill --limit 500
        """
    )

    parser.add_argument(
        "--db",
        help="Path to the memory database (defaults to config or ~/.agentic_memory/memory.db)"
    )
    parser.add_argument(
        "--config",
        help="Path to a configuration file"
    )
    parser.add_argument(
        "--no-embeddings",
        action="store_true",
        help="Disable semantic search for this invocation"
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("stats", help="Show memory statistics")

    search_parser = subparsers.add_parser("search", help="Search memories")
    search_parser.add_argument("query", help="Search query")
    search_parser.add_argument(
        "--limit", "-n",
        type=int,
        default=10,
        help="Maximum number of results (default: 10)"
    )
    search_parser.add_argument(
        "--type",
        dest="types",
        action="append",
        choices=[t.value for t in MemoryType],
        help="Restrict to a memory type (repeatable)"
    )
    search_parser.add_argument(
        "--include-private",
        action="store_true",
        help="Include private memories"
    )

    recent_parser = subparsers.add_parser("recent", help="Show the newest memories")
    recent_parser.add_argument("--limit", "-n", type=int, default=10)
    recent_parser.add_argument("--include-private", action="store_true")

    show_parser = subparsers.add_parser("show", help="Show a memory as JSON")
    show_parser.add_argument("id", type=int, help="Memory id")

    forget_parser = subparsers.add_parser("forget", help="Delete a memory")
    forget_parser.add_argument("id", type=int, help="Memory id")

    prune_parser = subparsers.add_parser(
        "prune",
        help="Apply retention policy (defaults from config)"
    )
    prune_parser.add_argument(
        "--days",
        type=int,
        help="Delete memories older than this many days"
    )
    prune_parser.add_argument(
        "--max",
        dest="max_memories",
        type=int,
        help="Keep at most this many memories"
    )

    subparsers.add_parser("optimize", help="Compact the full-text index")
    subparsers.add_parser("rebuild", help="Rebuild the full-text index")

    backfill_parser = subparsers.add_parser(
        "backfill",
        help="Embed memories whose embedding is pending"
    )
    backfill_parser.add_argument("--limit", type=int, default=100)

    export_parser = subparsers.add_parser("export", help="Export memories to JSON")
    export_parser.add_argument("output", help="Output file path")

    import_parser = subparsers.add_parser("import", help="Import memories from JSON")
    import_parser.add_argument("input", help="Input file path")

    return parser


def create_manager(args) -> MemoryManager:
    """Build a manager from command line arguments."""
    overrides = {}
    if args.db:
        overrides["db_path"] = args.db
    if args.no_embeddings:
        overrides["embeddings"] = {"enabled": False}

    config = load_config(config_path=args.config, **overrides)
    return MemoryManager(config)


def _format_time(timestamp: Optional[int]) -> str:
    if not timestamp:
        return "-"
    return datetime.fromtimestamp(timestamp).strftime("%Y-%m-%d %H:%M")


def _print_memory_line(memory: Memory, prefix: str = "") -> None:
    print(f"{prefix}#{memory.id} [{memory.type.value}] {memory.title} "
          f"(importance {memory.importance}, {_format_time(memory.created_at)})")


def handle_stats(manager: MemoryManager, args) -> int:
    """Show memory statistics."""
    stats = manager.get_stats()
    print(f"Database: {manager.store.db_path}")
    print(f"Total memories: {stats.total_memories}")
    for memory_type, count in sorted(stats.by_type.items()):
        print(f"  {memory_type}: {count}")
    for visibility, count in sorted(stats.by_visibility.items()):
        print(f"  {visibility}: {count}")
    print(f"Embeddings: {stats.total_vectors}")
    print(f"Oldest: {_format_time(stats.oldest_memory)}")
    print(f"Newest: {_format_time(stats.newest_memory)}")
    print(f"Size: {stats.total_size_bytes / 1024:.1f} KB")
    return 0


def handle_search(manager: MemoryManager, args) -> int:
    """Search memories."""
    results = manager.search(SearchOptions(
        query=args.query,
        limit=args.limit,
        types=[MemoryType(t) for t in args.types] if args.types else None,
        include_private=args.include_private,
    ))

    if not results:
        print("No memories found matching your query.")
        return 0

    print(f"Found {len(results)} matching memories:\n")
    for i, result in enumerate(results, 1):
        memory = result.memory
        print(f"{i}. [{memory.type.value}] {memory.title}")
        print(f"   ID: {memory.id}  Score: {result.score:.3f}  Match: {result.match_type.value}")
        preview = (result.highlighted or memory.content)[:100].replace("\n", " ")
        if len(memory.content) > 100:
            preview += "..."
        print(f"   {preview}")
        if memory.concepts:
            print(f"   Tags: {', '.join(memory.concepts)}")
        print()
    return 0


def handle_recent(manager: MemoryManager, args) -> int:
    """Show the newest memories."""
    memories = manager.get_recent(args.limit, include_private=args.include_private)
    if not memories:
        print("No memories stored.")
        return 0
    for memory in memories:
        _print_memory_line(memory)
    return 0


def handle_show(manager: MemoryManager, args) -> int:
    """Show a memory as JSON."""
    memory = manager.get_by_id(args.id)
    if memory is None:
        print(f"Error: Memory {args.id} not found")
        return 1
    print(json.dumps(memory.to_dict(), indent=2))
    return 0


def handle_forget(manager: MemoryManager, args) -> int:
    """Delete a memory."""
    if not manager.delete(args.id):
        print(f"Error: Memory {args.id} not found")
        return 1
    print(f"Deleted memory {args.id}")
    return 0


def handle_prune(manager: MemoryManager, args) -> int:
    """Apply retention policy."""
    if args.days is None and args.max_memories is None:
        results = manager.run_maintenance()
        for name, result in results.items():
            print(f"{name}: {result['deleted']} deleted ({result['reason']})")
        return 0

    deleted = 0
    if args.days is not None:
        deleted += manager.store.delete_older_than(args.days)
    if args.max_memories is not None:
        deleted += manager.store.trim_to_max(args.max_memories)
    print(f"Pruned {deleted} memories")
    return 0


def handle_optimize(manager: MemoryManager, args) -> int:
    manager.optimize()
    print("Full-text index optimized.")
    return 0


def handle_rebuild(manager: MemoryManager, args) -> int:
    manager.rebuild_index()
    print("Full-text index rebuilt.")
    return 0


def handle_backfill(manager: MemoryManager, args) -> int:
    """Embed pending memories."""
    if not manager.embeddings_enabled:
        print("Error: Embeddings are disabled")
        return 1
    count = manager.backfill_embeddings(args.limit)
    print(f"Embedded {count} memories")
    return 0


def handle_export(manager: MemoryManager, args) -> int:
    """Export memories to file."""
    count = manager.export_memories(args.output)
    print(f"Exported {count} memories to {args.output}")
    return 0


def handle_import(manager: MemoryManager, args) -> int:
    """Import memories from file."""
    if not Path(args.input).exists():
        print(f"Error: File not found: {args.input}")
        return 1
    count = manager.import_memories(args.input)
    print(f"Imported {count} memories from {args.input}")
    return 0


HANDLERS = {
    "stats": handle_stats,
    "search": handle_search,
    "recent": handle_recent,
    "show": handle_show,
    "forget": handle_forget,
    "prune": handle_prune,
    "optimize": handle_optimize,
    "rebuild": handle_rebuild,
    "backfill": handle_backfill,
    "export": handle_export,
    "import": handle_import,
}


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    setup_logging(args.verbose)

    try:
        manager = create_manager(args)
    except MemorySystemError as e:
        print(f"Error: {e}")
        return 1

    try:
        return HANDLERS[args.command](manager, args)
    except (MemorySystemError, OSError, ValueError) as e:
        print(f"Error: {e}")
        return 1
    finally:
        manager.close()


if __name__ == "__main__":
    sys.exit(main())
