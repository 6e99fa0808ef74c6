#!/usr/bin/env python
"""Command-line entry point for notegraph."""
import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel

from notegraph import __version__
from notegraph.config import config
from notegraph.exceptions import NotegraphError, is_client_error
from notegraph.models.schema import ConnectionType
from notegraph.observability import configure_logging
from notegraph.services.note_graph_service import NoteGraphService

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser with one subcommand per operation."""
    parser = argparse.ArgumentParser(
        prog="notegraph",
        description="Connect and categorize free-text notes",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--database-path",
        help="SQLite database file path",
        type=str,
        default=os.environ.get("NOTEGRAPH_DATABASE_PATH"),
    )
    parser.add_argument(
        "--log-level",
        help="Logging level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=os.environ.get("NOTEGRAPH_LOG_LEVEL", "WARNING"),
    )
    parser.add_argument(
        "--log-dir",
        help="Directory for rotating log files (disabled when omitted)",
        type=str,
        default=os.environ.get("NOTEGRAPH_LOG_DIR"),
    )

    commands = parser.add_subparsers(dest="command", required=True)

    add = commands.add_parser("add", help="Create a note")
    add.add_argument("content", help="Note text, or '-' to read it from stdin")

    listing = commands.add_parser("list", help="List notes, newest first")
    listing.add_argument("--page", type=int, default=1)
    listing.add_argument("--limit", type=int, default=10)

    connect = commands.add_parser("connect", help="Connect two notes")
    connect.add_argument("source_id")
    connect.add_argument("target_id")
    connect.add_argument(
        "--type",
        dest="connection_type",
        choices=[t.value for t in ConnectionType],
        default=ConnectionType.MANUAL.value,
    )

    commands.add_parser("recalculate", help="Rebuild all automatic connections")
    commands.add_parser("rebuild-categories", help="Categorize every note from scratch")
    commands.add_parser("hierarchy", help="Show categories and their hierarchy")

    category_notes = commands.add_parser("category-notes", help="List the notes in a category")
    category_notes.add_argument("category_id")
    category_notes.add_argument(
        "--include-subcategories",
        action="store_true",
        help="Also list notes of descendant categories",
    )

    delete = commands.add_parser("delete", help="Delete a note")
    delete.add_argument("note_id")

    return parser


def _emit(value) -> None:
    """Print a result as JSON on stdout."""
    if isinstance(value, BaseModel):
        print(value.model_dump_json(indent=2))
    elif isinstance(value, list):
        print(json.dumps(
            [v.model_dump(mode="json") if isinstance(v, BaseModel) else v for v in value],
            indent=2,
        ))
    else:
        print(json.dumps(value, indent=2))


def run_command(service: NoteGraphService, args: argparse.Namespace) -> None:
    """Dispatch one parsed subcommand to the service."""
    if args.command == "add":
        content = sys.stdin.read() if args.content == "-" else args.content
        _emit(service.create_note(content))
    elif args.command == "list":
        _emit(service.get_recent_notes(page=args.page, limit=args.limit))
    elif args.command == "connect":
        _emit(service.create_connection(
            args.source_id, args.target_id, ConnectionType(args.connection_type)
        ))
    elif args.command == "recalculate":
        _emit(service.recalculate_all_connections())
    elif args.command == "rebuild-categories":
        _emit(service.rebuild_all_categories())
    elif args.command == "hierarchy":
        _emit(service.get_category_hierarchy())
    elif args.command == "category-notes":
        _emit(service.get_notes_by_category(
            args.category_id, include_subcategories=args.include_subcategories
        ))
    elif args.command == "delete":
        removed = service.delete_note(args.note_id)
        _emit({"deleted": args.note_id, "connections_removed": removed})


def main(argv: Optional[List[str]] = None) -> int:
    """Run the notegraph command line.

    Returns:
        0 on success, 1 for invalid requests, 2 for storage or other failures.
    """
    args = build_parser().parse_args(argv)

    if args.database_path:
        config.database_path = Path(args.database_path)

    log_level = getattr(logging, args.log_level.upper(), logging.WARNING)
    try:
        configure_logging(
            log_dir=args.log_dir,
            level=log_level,
            file_logging=bool(args.log_dir),
        )
    except OSError as e:
        logging.basicConfig(level=log_level)
        logger.warning("Failed to configure file logging: %s", e)

    service = NoteGraphService(settings=config)
    try:
        run_command(service, args)
    except NotegraphError as e:
        print(json.dumps(e.to_dict(), indent=2), file=sys.stderr)
        return 1 if is_client_error(e) else 2
    finally:
        service.shutdown()
    return 0


if __name__ == "__main__":
    sys.exit(main())
