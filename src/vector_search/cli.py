"""
Vector search CLI.

Schema lifecycle, one-off indexing and search, and bulk population from
the todo service or a JSON file. Results are printed to stdout as JSON;
logs go to stderr.

Exit codes:
    0  success
    1  error (or unhealthy for `health`)
    2  populate finished with per-item failures
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from .core.config import Settings
from .core.exceptions import VectorSearchError
from .core.types import Collection
from .core.logging import configure_logging
from .providers import create_provider
from .search import BulkPopulator, SimilaritySearchEngine
from .sources import TodoServiceClient
from .storage import create_embedding_store


logger = logging.getLogger(__name__)


def _json_arg(value: str) -> Dict[str, Any]:
    try:
        parsed = json.loads(value)
    except json.JSONDecodeError as e:
        raise argparse.ArgumentTypeError(f"invalid JSON: {e}")
    if not isinstance(parsed, dict):
        raise argparse.ArgumentTypeError("metadata must be a JSON object")
    return parsed


def _add_search_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("query", help="Free-text query")
    parser.add_argument("--limit", type=int, default=None, help="Maximum results (default: 10)")
    parser.add_argument(
        "--threshold",
        type=float,
        default=None,
        help="Minimum similarity in [-1, 1] (default: 0.7)"
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="vector-search",
        description="Semantic embedding store and similarity search",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Create tables (idempotent)
  vector-search init-db

  # Index a task and search for it
  vector-search index-task --key todo-1 --owner 7 --text "Buy milk"
  vector-search search-tasks "grocery shopping" --owner 7 --threshold 0.5

  # Index all todos from the todo service
  vector-search populate --from-service
        """,
    )
    parser.add_argument("--config", type=Path, default=None, help="YAML config file")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument("--json-logs", action="store_true", help="Emit JSON log lines")

    subparsers = parser.add_subparsers(dest="command", help="Command")

    subparsers.add_parser("init-db", help="Create embedding tables and indexes")

    reset_parser = subparsers.add_parser("reset-db", help="Drop and recreate embedding tables")
    reset_parser.add_argument(
        "--yes",
        action="store_true",
        help="Confirm that all embeddings will be deleted"
    )

    subparsers.add_parser("health", help="Check provider and store health")
    stats_parser = subparsers.add_parser("stats", help="Show record counts per collection")
    stats_parser.add_argument(
        "--collection",
        choices=[c.value for c in Collection],
        help="Only count this collection"
    )

    embed_parser = subparsers.add_parser("embed", help="Embed text and print the vector")
    embed_parser.add_argument("text", help="Text to embed")

    task_parser = subparsers.add_parser("index-task", help="Index (or re-index) a task")
    task_parser.add_argument("--key", required=True, help="Task id")
    task_parser.add_argument("--owner", type=int, required=True, help="Owner user id")
    task_parser.add_argument("--text", required=True, help="Task text")
    task_parser.add_argument("--completed", action="store_true", help="Task is completed")
    task_parser.add_argument("--metadata", type=_json_arg, default=None, help="JSON object")

    content_parser = subparsers.add_parser("index-content", help="Index generated content")
    content_parser.add_argument("--owner", type=int, required=True, help="Owner user id")
    content_parser.add_argument("--type", dest="content_type", required=True, help="Content type")
    content_parser.add_argument("--text", required=True, help="Content text")
    content_parser.add_argument("--key", default=None, help="Existing content id to replace")
    content_parser.add_argument("--metadata", type=_json_arg, default=None, help="JSON object")

    profile_parser = subparsers.add_parser("index-profile", help="Index a user profile")
    profile_parser.add_argument("--owner", type=int, required=True, help="User id")
    profile_parser.add_argument("--name", default=None)
    profile_parser.add_argument("--email", default=None)
    profile_parser.add_argument("--role", default=None)
    profile_parser.add_argument("--version", type=int, default=1, help="Profile version (default: 1)")

    search_tasks_parser = subparsers.add_parser("search-tasks", help="Search tasks")
    _add_search_args(search_tasks_parser)
    search_tasks_parser.add_argument("--owner", type=int, default=None, help="Owner user id")
    search_tasks_parser.add_argument(
        "--status", choices=["completed", "pending"], default=None, help="Task status filter"
    )
    search_tasks_parser.add_argument(
        "--include-others",
        action="store_true",
        help="Fill remaining results with anonymized tasks of other owners"
    )

    search_content_parser = subparsers.add_parser("search-content", help="Search generated content")
    _add_search_args(search_content_parser)
    search_content_parser.add_argument("--owner", type=int, default=None, help="Owner user id")
    search_content_parser.add_argument("--type", dest="content_type", default=None, help="Content type")

    search_profiles_parser = subparsers.add_parser("search-profiles", help="Search user profiles")
    _add_search_args(search_profiles_parser)

    delete_parser = subparsers.add_parser("delete-task", help="Delete a task embedding")
    delete_parser.add_argument("key", help="Task id")

    populate_parser = subparsers.add_parser("populate", help="Bulk index existing todos")
    source = populate_parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--input", type=Path, help="JSON file with a list of todos")
    source.add_argument(
        "--from-service",
        action="store_true",
        help="Fetch todos from TODO_SERVICE_URL using AUTH_TOKEN"
    )
    populate_parser.add_argument(
        "--delay",
        type=float,
        default=None,
        help="Seconds between items (default: 0.1)"
    )
    populate_parser.add_argument(
        "--retries",
        type=int,
        default=0,
        help="Extra attempts per item on provider/store errors (default: 0)"
    )

    return parser


def _load_todos(path: Path) -> List[Any]:
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if isinstance(data, dict):
        data = data.get("todos")
    if not isinstance(data, list):
        raise ValueError(f"{path} must contain a list of todos or {{\"todos\": [...]}}")
    return data


def run(args: argparse.Namespace, settings: Settings) -> int:
    """Execute a parsed command. Returns the process exit code."""
    provider = create_provider(settings.embedding)

    if args.command == "embed":
        vector = provider.embed(args.text)
        _print({"model": provider.model_id, "dimensions": len(vector), "vector": vector})
        return 0

    store = create_embedding_store(settings.store, settings.embedding.dimensions)
    try:
        engine = SimilaritySearchEngine(provider, store, settings.search)
        return _dispatch(args, settings, engine)
    finally:
        store.close()


def _dispatch(args: argparse.Namespace, settings: Settings, engine: SimilaritySearchEngine) -> int:
    command = args.command

    if command == "init-db":
        engine.store.init_schema()
        _print({"status": "ok", "backend": engine.store.backend_name})
        return 0

    if command == "reset-db":
        if not args.yes:
            logger.error("reset-db deletes every embedding; re-run with --yes to confirm")
            return 1
        engine.store.reset()
        _print({"status": "ok", "backend": engine.store.backend_name})
        return 0

    if command == "health":
        report = engine.health()
        _print(report)
        return 0 if report["status"] == "healthy" else 1

    if command == "stats":
        stats = engine.stats()
        if args.collection:
            count = stats.count_for(Collection(args.collection))
            _print({"collection": args.collection, "count": count})
        else:
            _print(stats.to_dict())
        return 0

    if command == "index-task":
        record = engine.index_task(args.key, args.owner, args.text, args.completed, args.metadata)
        _print(record.to_dict())
        return 0

    if command == "index-content":
        record = engine.index_content(
            args.owner, args.content_type, args.text, metadata=args.metadata, key=args.key
        )
        _print(record.to_dict())
        return 0

    if command == "index-profile":
        profile = {
            name: value
            for name, value in (("name", args.name), ("email", args.email), ("role", args.role))
            if value is not None
        }
        record = engine.index_profile(args.owner, profile, version=args.version)
        _print(record.to_dict())
        return 0

    if command == "search-tasks":
        hits = engine.search_tasks(
            args.query,
            owner_id=args.owner,
            limit=args.limit,
            threshold=args.threshold,
            include_others=args.include_others,
            status=args.status,
        )
        _print([hit.to_dict() for hit in hits])
        return 0

    if command == "search-content":
        hits = engine.search_content(
            args.query,
            owner_id=args.owner,
            content_type=args.content_type,
            limit=args.limit,
            threshold=args.threshold,
        )
        _print([hit.to_dict() for hit in hits])
        return 0

    if command == "search-profiles":
        hits = engine.search_profiles(args.query, limit=args.limit, threshold=args.threshold)
        _print([hit.to_dict() for hit in hits])
        return 0

    if command == "delete-task":
        removed = engine.delete_task(args.key)
        _print({"key": args.key, "deleted": removed})
        return 0

    if command == "populate":
        if args.from_service:
            client = TodoServiceClient.from_config(settings.search)
            try:
                todos = client.fetch_todos()
            finally:
                client.close()
        else:
            todos = _load_todos(args.input)

        delay = settings.search.populate_delay_seconds if args.delay is None else args.delay
        attempts = max(settings.search.populate_max_attempts, args.retries + 1)
        populator = BulkPopulator(
            engine,
            delay_seconds=delay,
            max_attempts=attempts,
        )
        result = populator.populate_tasks(todos)
        _print(result.to_dict())
        return 2 if result.failure_count else 0

    raise ValueError(f"Unknown command: {command}")


def _print(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


def main(argv: Optional[List[str]] = None) -> None:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    configure_logging(
        level=logging.DEBUG if args.verbose else logging.INFO,
        structured=args.json_logs,
    )

    try:
        settings = Settings.from_file(args.config) if args.config else Settings.from_env()
        code = run(args, settings)
    except VectorSearchError as e:
        logger.error(f"{type(e).__name__}: {e}")
        sys.exit(1)
    except (OSError, ValueError) as e:
        logger.error(f"{e}")
        sys.exit(1)

    sys.exit(code)


if __name__ == "__main__":
    main()
