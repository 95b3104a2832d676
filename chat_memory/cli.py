"""
Command-line interface for the chat memory engine.
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from .cache import CacheService
from .config import ChatMemoryConfig, create_default_config_file, load_config
from .errors import ChatMemoryError, MigrationError
from .factory import create_manager
from .memory import MemoryStore


logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False):
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="chat-memory",
        description="Chat Memory - semantic memory for conversations",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Create or upgrade the database schema
  chat-memory migrate

  # Roll the schema back to version 5
  chat-memory rollback 5

  # Find earlier chats relevant to a message
  chat-memory context "my flask api returns 500"

  # Export a chat and import it elsewhere
  chat-memory export 3f2b... -o chat.json
  chat-memory --db-path other.db import chat.json
        """
    )

    parser.add_argument(
        "--db-path",
        help="Path to the memory database (defaults to config or ~/.chat_memory/chat_memory.db)"
    )
    parser.add_argument(
        "--config",
        help="Path to a configuration file (defaults to .chat-memory.yml lookup)"
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("migrate", help="Apply pending schema migrations")

    rollback_parser = subparsers.add_parser(
        "rollback",
        help="Revert schema migrations above a version"
    )
    rollback_parser.add_argument(
        "version",
        type=int,
        help="Target schema version"
    )

    subparsers.add_parser("status", help="Show schema migration status")
    subparsers.add_parser("chats", help="List stored chats")

    search_parser = subparsers.add_parser(
        "search",
        help="Find chats whose key terms match a query"
    )
    search_parser.add_argument("query", help="Search query")

    context_parser = subparsers.add_parser(
        "context",
        help="Show context from earlier chats relevant to a message"
    )
    context_parser.add_argument("query", help="Message text")
    context_parser.add_argument(
        "--threshold",
        type=float,
        help="Minimum similarity score"
    )

    subparsers.add_parser("stats", help="Show memory statistics")

    export_parser = subparsers.add_parser("export", help="Export a chat as JSON")
    export_parser.add_argument("chat_id", help="ID of the chat to export")
    export_parser.add_argument(
        "-o", "--output",
        help="Output file (defaults to stdout)"
    )

    import_parser = subparsers.add_parser("import", help="Import a chat from JSON")
    import_parser.add_argument("input", help="File created by export")

    init_parser = subparsers.add_parser("init-config", help="Create a default configuration file")
    init_parser.add_argument(
        "path",
        nargs="?",
        help="Where to write the file (defaults to ./.chat-memory.yml)"
    )

    return parser


def main(argv: Optional[List[str]] = None):
    """Main entry point for the CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    setup_logging(args.verbose)

    if args.command == "init-config":
        handle_init_config(args)
        return

    config = load_config(args.config)
    if args.db_path:
        config.store.db_path = args.db_path

    try:
        if args.command in ("migrate", "rollback", "status"):
            handle_schema(config, args)
        else:
            handle_memory(config, args)
    except ChatMemoryError as e:
        print(f"Error: {e}")
        sys.exit(1)


def handle_init_config(args):
    """Handle the init-config command."""
    target = Path(args.path) if args.path else Path.cwd() / ".chat-memory.yml"
    if target.exists():
        print(f"Error: {target} already exists")
        sys.exit(1)
    path = create_default_config_file(str(target))
    print(f"Created {path}")


def handle_schema(config: ChatMemoryConfig, args):
    """Handle migrate, rollback and status."""
    store = MemoryStore(db_path=config.store.db_path, auto_migrate=False)
    try:
        if args.command == "migrate":
            applied = store.migrate()
            if applied:
                print(f"Applied migrations: {', '.join(str(v) for v in applied)}")
            else:
                print("Database is up to date")
            print(f"Schema version: {store.schema_version}")

        elif args.command == "rollback":
            try:
                reverted = store.rollback(args.version)
            except MigrationError as e:
                print(f"Rollback failed: {e}")
                sys.exit(1)
            if reverted:
                print(f"Rolled back migrations: {', '.join(str(v) for v in reverted)}")
            else:
                print("No rollback needed")
            print(f"Schema version: {store.schema_version}")

        elif args.command == "status":
            handle_status(store)
    finally:
        store.close()


def handle_status(store: MemoryStore):
    """Print every known migration and whether it is applied."""
    print(f"Schema version: {store.schema_version}")
    for row in store.migration_status():
        marker = "✓" if row["applied_at"] else "✗"
        applied = row["applied_at"] or "pending"
        print(f"  [{marker}] {row['version']:>3}  {row['description']}  ({applied})")


def handle_memory(config: ChatMemoryConfig, args):
    """Handle commands that need the memory manager."""
    store = MemoryStore(db_path=config.store.db_path)
    cache = None
    if config.cache.cache_dir:
        cache = CacheService(config.cache, start_cleanup=False)
    manager = create_manager(config, store=store, cache=cache)

    try:
        if args.command == "chats":
            handle_chats(manager)
        elif args.command == "search":
            handle_search(manager, args)
        elif args.command == "context":
            handle_context(manager, args)
        elif args.command == "stats":
            handle_stats(manager)
        elif args.command == "export":
            handle_export(manager, args)
        elif args.command == "import":
            handle_import(manager, args)
    finally:
        if cache is not None:
            cache.close()
        store.close()


def _print_chat(chat):
    last = chat.last_message_at.isoformat() if chat.last_message_at else "-"
    print(f"{chat.id}  {chat.title}")
    print(f"   Last message: {last}  Messages: {len(chat.messages)}")
    if chat.tags:
        print(f"   Tags: {', '.join(chat.tags)}")
    if chat.summary:
        print(f"   Summary: {chat.summary}")


def handle_chats(manager):
    """List all chats, most recent first."""
    chats = manager.get_all_chats()
    if not chats:
        print("No chats stored.")
        return
    for chat in chats:
        _print_chat(chat)
        print()


def handle_search(manager, args):
    """Search chats by key terms."""
    chats = manager.search_chats(args.query)
    if not chats:
        print("No matching chats found.")
        return
    print(f"Found {len(chats)} chats:\n")
    for chat in chats:
        _print_chat(chat)
        print()


def handle_context(manager, args):
    """Show context injected for a message."""
    injection = manager.get_context_injection(args.query, args.threshold)
    if not injection.relevant_memories:
        print("No relevant context found.")
        return
    for i, (match, context) in enumerate(
        zip(injection.relevant_memories, injection.injected_context), 1
    ):
        print(f"{i}. Score: {match.score:.3f}  Chat: {match.memory_id}")
        if match.matched_terms:
            print(f"   Matched terms: {', '.join(match.matched_terms)}")
        print(f"   {context}")
        print()


def handle_stats(manager):
    """Show store and chat statistics."""
    stats = manager.store.get_stats().to_dict()
    stats.update(manager.get_chat_stats())
    stats["token_usage"] = manager.store.get_token_totals()
    print(json.dumps(stats, indent=2))


def handle_export(manager, args):
    """Export a chat to stdout or a file."""
    try:
        data = manager.export_chat(args.chat_id)
    except KeyError:
        print(f"Error: Chat not found: {args.chat_id}")
        sys.exit(1)

    if args.output:
        Path(args.output).write_text(data)
        print(f"Exported chat {args.chat_id} to {args.output}")
    else:
        print(data)


def handle_import(manager, args):
    """Import a chat from a file."""
    path = Path(args.input)
    if not path.exists():
        print(f"Error: File not found: {args.input}")
        sys.exit(1)

    chat_id = manager.import_chat(path.read_text())
    print(f"Imported chat as {chat_id}")


if __name__ == "__main__":
    main()
