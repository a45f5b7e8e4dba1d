"""
core/jikan.py -- Jikan v4 (unofficial MyAnimeList API) client.

All upstream traffic goes through the CacheAsideGateway, so every method here
is cache-aside and rate limited. This module only builds URLs and chooses the
decoder; it never touches the network directly.

Endpoints used:
  /anime/{id}/full                  single anime with full metadata
  /anime?q=&page=&limit=            title search
  /seasons/now, /seasons/upcoming   current / next season listings
  /seasons/{year}/{season}?page=    archive season listing
  /top/anime?page=&limit=           ranking

Pagination is clamped rather than rejected: page >= 1, 1 <= limit <= 25
(Jikan's maximum page size). Query parameters are always url-encoded so the
cache key for a given request is stable.
"""

from __future__ import annotations

from typing import Optional
from urllib.parse import urlencode

from core.gateway import CacheAsideGateway
from core.models import SEASONS, Anime, AnimePage, decode_anime_page, decode_anime_response

JIKAN_BASE_URL = "https://api.jikan.moe/v4"
MAX_LIMIT = 25
DEFAULT_LIMIT = 25


def clamp_page(page: Optional[int]) -> int:
    return max(1 if page is None else page, 1)


def clamp_limit(limit: Optional[int]) -> int:
    return min(max(DEFAULT_LIMIT if limit is None else limit, 1), MAX_LIMIT)


def normalize_season(season: str) -> str:
    """Return the lowercase season name or raise ValueError."""
    normalized = season.strip().lower()
    if normalized not in SEASONS:
        raise ValueError(f"Unknown season '{season}'. Expected one of: {', '.join(SEASONS)}.")
    return normalized


class JikanClient:
    def __init__(self, gateway: CacheAsideGateway, base_url: str = JIKAN_BASE_URL) -> None:
        self._gateway = gateway
        self._base_url = base_url.rstrip("/")

    # ------------------------------------------------------------------
    # URL builders
    # ------------------------------------------------------------------

    def _url(self, path: str, **params) -> str:
        url = f"{self._base_url}{path}"
        if params:
            url = f"{url}?{urlencode(params)}"
        return url

    def anime_url(self, anime_id: int) -> str:
        if anime_id < 1:
            raise ValueError("Anime id must be a positive integer.")
        return self._url(f"/anime/{anime_id}/full")

    def search_url(self, query: str, page: int = 1, limit: int = DEFAULT_LIMIT) -> str:
        query = query.strip()
        if not query:
            raise ValueError("Search query must not be empty.")
        return self._url("/anime", q=query, page=clamp_page(page), limit=clamp_limit(limit))

    def season_now_url(self, page: int = 1, limit: int = DEFAULT_LIMIT) -> str:
        return self._url("/seasons/now", page=clamp_page(page), limit=clamp_limit(limit))

    def season_upcoming_url(self, page: int = 1, limit: int = DEFAULT_LIMIT) -> str:
        return self._url("/seasons/upcoming", page=clamp_page(page), limit=clamp_limit(limit))

    def season_url(self, year: int, season: str, page: int = 1) -> str:
        return self._url(f"/seasons/{int(year)}/{normalize_season(season)}", page=clamp_page(page))

    def top_url(self, page: int = 1, limit: int = DEFAULT_LIMIT) -> str:
        return self._url("/top/anime", page=clamp_page(page), limit=clamp_limit(limit))

    # ------------------------------------------------------------------
    # Fetchers
    # ------------------------------------------------------------------

    async def get_anime(self, anime_id: int) -> Anime:
        return await self._gateway.fetch(self.anime_url(anime_id), decode_anime_response)

    async def search(self, query: str, page: int = 1, limit: int = DEFAULT_LIMIT) -> AnimePage:
        return await self._gateway.fetch(self.search_url(query, page, limit), decode_anime_page)

    async def season_now(self, page: int = 1, limit: int = DEFAULT_LIMIT) -> AnimePage:
        return await self._gateway.fetch(self.season_now_url(page, limit), decode_anime_page)

    async def season_upcoming(self, page: int = 1, limit: int = DEFAULT_LIMIT) -> AnimePage:
        return await self._gateway.fetch(self.season_upcoming_url(page, limit), decode_anime_page)

    async def season(self, year: int, season: str, page: int = 1) -> AnimePage:
        return await self._gateway.fetch(self.season_url(year, season, page), decode_anime_page)

    async def top(self, page: int = 1, limit: int = DEFAULT_LIMIT) -> AnimePage:
        return await self._gateway.fetch(self.top_url(page, limit), decode_anime_page)
