"""kb-service: diagnostics command line for the knowledge base cache.

Examples:
    kb-service search "what colours do tubular lanyards come in"
    kb-service article 5000123
    kb-service folders --force-refresh
    kb-service stats
"""

import argparse
import asyncio
import json
import sys
from typing import Any, Dict, Optional, Sequence

from kb_service.core.config import settings
from kb_service.core.container import ServiceContainer
from kb_service.core.errors import KnowledgeBaseError
from kb_service.core.logging import get_logger, setup_logging

logger = get_logger(__name__)


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, default=str, ensure_ascii=False))


async def run_command(args: argparse.Namespace, container: Optional[ServiceContainer] = None) -> int:
    """Run one subcommand against a freshly initialized container."""
    config = settings.model_copy()
    if args.transport:
        config.transport = args.transport
    if args.server_url:
        config.server_url = args.server_url
    if args.db:
        config.database_path = args.db
    if args.no_fast_tier:
        config.enable_fast_tier = False

    container = container or ServiceContainer()
    await container.initialize(config)
    kb = container.knowledge_base

    try:
        result: Dict[str, Any]
        if args.command == "search":
            result = await kb.search(
                args.query, category=args.category, page=args.page,
                per_page=args.per_page, broaden=not args.exact,
            )
        elif args.command == "article":
            result = await kb.get_article(args.article_id)
        elif args.command == "folders":
            if args.category_id:
                result = await kb.list_folders_by_category(args.category_id)
            else:
                result = await kb.list_folders(force_refresh=args.force_refresh)
        elif args.command == "categories":
            result = await kb.list_categories()
        elif args.command == "check-folder-name":
            result = await kb.validate_folder_name(args.name, args.category_id, args.exclude)
        elif args.command == "stats":
            result = await kb.get_cache_stats()
        elif args.command == "clear-expired":
            result = {"cleared": await kb.clear_expired_cache()}
        elif args.command == "invalidate":
            result = {"invalidated": await kb.invalidate_article(args.article_id)}
        elif args.command == "health":
            result = await kb.get_health()
        else:
            raise ValueError(f"Unknown command: {args.command}")
    except (KnowledgeBaseError, ValueError) as e:
        logger.error("Command %s failed: %s", args.command, e)
        _print_json(e.to_dict() if isinstance(e, KnowledgeBaseError) else {"error": str(e)})
        return 1
    finally:
        await container.shutdown()

    _print_json(result)
    return 0


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser("kb-service", formatter_class=argparse.ArgumentDefaultsHelpFormatter)
    p.add_argument("--log-level", default=settings.log_level, help="Log level (DEBUG, INFO, WARNING, ERROR)")
    p.add_argument("--log-format", choices=["json", "text"], default="text", help="Log output format")
    p.add_argument("--transport", choices=["stdio", "http"], default=None, help="Override the engine transport")
    p.add_argument("--server-url", default=None, help="Engine URL for the http transport")
    p.add_argument("--db", default=None, help="Path of the SQLite cache database")
    p.add_argument("--no-fast-tier", action="store_true", help="Do not connect to Redis")

    sub = p.add_subparsers(dest="command", required=True)

    search = sub.add_parser("search", help="Search articles")
    search.add_argument("query")
    search.add_argument("--category", default=None)
    search.add_argument("--page", type=int, default=1)
    search.add_argument("--per-page", type=int, default=10)
    search.add_argument("--exact", action="store_true", help="Send the query as-is, without keyword extraction")

    article = sub.add_parser("article", help="Fetch one article")
    article.add_argument("article_id")

    folders = sub.add_parser("folders", help="List cached folders")
    folders.add_argument("--force-refresh", action="store_true")
    folders.add_argument("--category-id", default=None, help="Only folders of this category")

    sub.add_parser("categories", help="List cached categories")

    check = sub.add_parser("check-folder-name", help="Check folder name uniqueness in a category")
    check.add_argument("name")
    check.add_argument("category_id")
    check.add_argument("--exclude", default=None, help="Folder id to ignore")

    sub.add_parser("stats", help="Cache statistics")
    sub.add_parser("clear-expired", help="Delete expired article cache entries")

    invalidate = sub.add_parser("invalidate", help="Drop one article from the cache")
    invalidate.add_argument("article_id")

    sub.add_parser("health", help="Test the engine connection")

    args = p.parse_args(argv)
    if args.command == "search":
        if args.page < 1:
            args.page = 1
        if args.per_page < 1:
            args.per_page = 10
    return args


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging(level=args.log_level, fmt=args.log_format)
    try:
        return asyncio.run(run_command(args))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
