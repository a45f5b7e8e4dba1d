#!/usr/bin/env python3
"""
AniVault -- anime metadata lookups and account housekeeping from the terminal.
Metadata comes from the free Jikan API (unofficial MyAnimeList), cached locally
and throttled to Jikan's published limits.

Usage:
  python main.py anime 1
  python main.py search "frieren"
  python main.py search "frieren" --page 2 --limit 10
  python main.py season now
  python main.py season upcoming
  python main.py season 2023 fall
  python main.py top
  python main.py anime 1 --json
  python main.py anime 1 --no-cache
  python main.py sweep

Environment variables (see core/config.py):
  DATABASE_URL      Credential store used by "sweep" (default sqlite:///anivault.db)
  JIKAN_CACHE_DB    Response cache file (default anivault_cache.db)
  SECRET_KEY        Required unless DEBUG=true (shared with the API configuration)
"""

import argparse
import asyncio
import logging
import sys
from typing import Optional, Union

from pydantic import ValidationError

from auth.ledger import RefreshTokenLedger
from auth.store import UserStore
from cache.store import ResponseCache
from core.config import Settings, get_settings
from core.formatter import disable_color, print_anime, print_page, to_json
from core.gateway import CacheAsideGateway, GatewayError, UpstreamThrottled
from core.jikan import DEFAULT_LIMIT, JikanClient
from core.models import Anime, AnimePage
from core.ratelimit import OutboundRateLimiter


def _build_client(settings: Settings, use_cache: bool) -> tuple[JikanClient, CacheAsideGateway, Optional[ResponseCache]]:
    cache = ResponseCache(settings.jikan_cache_db, ttl=settings.jikan_cache_ttl) if use_cache else None
    gateway = CacheAsideGateway(
        cache,
        OutboundRateLimiter(settings.jikan_max_per_second, settings.jikan_max_per_minute),
        timeout=settings.jikan_timeout_seconds,
        throttle_backoff=settings.jikan_throttle_backoff_seconds,
    )
    return JikanClient(gateway, settings.jikan_base_url), gateway, cache


async def _lookup(client: JikanClient, args: argparse.Namespace) -> tuple[Union[Anime, AnimePage], str]:
    """Dispatch one metadata subcommand. Returns (result, listing title)."""
    if args.command == "anime":
        return await client.get_anime(args.id), ""
    if args.command == "search":
        return await client.search(args.query, args.page, args.limit), f"SEARCH — {args.query}"
    if args.command == "top":
        return await client.top(args.page, args.limit), "TOP ANIME"

    # season
    if args.when == "now":
        return await client.season_now(args.page, args.limit), "THIS SEASON"
    if args.when == "upcoming":
        return await client.season_upcoming(args.page, args.limit), "UPCOMING SEASON"
    if not args.when.isdigit() or args.season is None:
        raise ValueError("Use 'season now', 'season upcoming', or 'season YEAR SEASON' (e.g. 'season 2023 fall').")
    return await client.season(int(args.when), args.season, args.page), f"{args.season.upper()} {args.when}"


def run_lookup(args: argparse.Namespace, settings: Settings) -> int:
    client, gateway, cache = _build_client(settings, use_cache=not args.no_cache)
    try:
        result, title = asyncio.run(_lookup(client, args))
    except ValueError as e:
        print(f"  [!] {e}")
        return 2
    except UpstreamThrottled as e:
        print(f"  [!] {e.message} (retry after {e.retry_after}s)")
        return 1
    except GatewayError as e:
        print(f"  [!] {e.message}")
        return 1
    finally:
        gateway.close()
        if cache is not None:
            cache.close()

    if args.json:
        print(to_json(result))
    elif isinstance(result, Anime):
        print_anime(result)
    else:
        print_page(result, title)
    return 0


def run_sweep(settings: Settings) -> int:
    """Delete revoked/expired refresh tokens and expired cache rows."""
    store = UserStore(settings.database_url)
    try:
        removed = RefreshTokenLedger(store, settings.refresh_token_expire_seconds).sweep()
    finally:
        store.close()
    cache = ResponseCache(settings.jikan_cache_db, ttl=settings.jikan_cache_ttl)
    try:
        purged = cache.purge_expired()
    finally:
        cache.close()
    print(f"  Removed {removed} refresh token(s) and {purged} cache entr{'y' if purged == 1 else 'ies'}.")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="anivault",
        description="Anime metadata lookups (via Jikan) and AniVault housekeeping.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py anime 5114
  python main.py search "frieren" --limit 5
  python main.py season 2023 fall --page 2
  python main.py top --json > top.json
  python main.py sweep
        """,
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--json", action="store_true", help="Output structured JSON")
    common.add_argument("--no-cache", action="store_true", help="Skip the local cache and force fresh API lookups")
    common.add_argument("--no-color", action="store_true", help="Disable ANSI color codes in terminal output")

    paging = argparse.ArgumentParser(add_help=False)
    paging.add_argument("--page", type=int, default=1, help="Result page (default: 1)")
    paging.add_argument("--limit", type=int, default=DEFAULT_LIMIT, help="Results per page, max 25 (default: 25)")

    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    anime = sub.add_parser("anime", parents=[common], help="Full metadata for one anime by MyAnimeList id")
    anime.add_argument("id", type=int, metavar="ID")

    search = sub.add_parser("search", parents=[common, paging], help="Search anime by title")
    search.add_argument("query", metavar="QUERY")

    season = sub.add_parser("season", parents=[common, paging], help="Seasonal listings")
    season.add_argument("when", metavar="now|upcoming|YEAR")
    season.add_argument("season", nargs="?", metavar="SEASON", help="winter, spring, summer or fall (with YEAR)")

    sub.add_parser("top", parents=[common, paging], help="Top-ranked anime")

    sub.add_parser("sweep", help="Delete dead refresh tokens and expired cache entries")
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    logging.basicConfig(level=logging.WARNING, format="%(levelname)-5s %(name)s %(message)s")
    try:
        settings = get_settings()
    except ValidationError as e:
        print(f"  [!] Configuration error: {e.errors()[0]['msg']}")
        return 2

    if args.command == "sweep":
        return run_sweep(settings)

    if args.no_color:
        disable_color()
    return run_lookup(args, settings)


if __name__ == "__main__":
    sys.exit(main())
