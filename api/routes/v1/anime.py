"""
api/routes/v1/anime.py -- Anime metadata route handlers (Jikan proxy).

Route registration order matters here. FastAPI resolves routes in the order
they are added to the router. The literal paths /anime/search, /anime/season/*
and /anime/top must be registered before /anime/{anime_id} or FastAPI will
try to parse "search" and "top" as anime ids and answer 422.

All handlers are async: the gateway awaits the shared OutboundRateLimiter and
runs the blocking HTTP call in a worker thread. GatewayError subclasses
propagate to the handler in api/main.py (503 + Retry-After for upstream
throttling, 502 otherwise).

Pagination is clamped by the Jikan client (page >= 1, 1 <= limit <= 25),
so out-of-range values are corrected instead of rejected.
"""

from typing import Annotated

from fastapi import APIRouter, HTTPException, Path, Query, Request

from api.models import AnimePageResponse, AnimeResponse, ErrorDetail
from core.jikan import DEFAULT_LIMIT, JikanClient

# Auth policy: all anime metadata routes are public.
router = APIRouter()


def _jikan(request: Request) -> JikanClient:
    return request.app.state.jikan


def _bad_request(exc: ValueError) -> HTTPException:
    return HTTPException(
        status_code=400,
        detail=ErrorDetail(code="invalid_parameter", message=str(exc)).model_dump(),
    )


# ---------------------------------------------------------------------------
# Listings -- registered FIRST to avoid /{anime_id} capture
# ---------------------------------------------------------------------------


@router.get("/anime/search", response_model=AnimePageResponse)
async def search_anime(
    request: Request,
    q: Annotated[str, Query(min_length=1, max_length=200)],
    page: int = 1,
    limit: int = DEFAULT_LIMIT,
) -> AnimePageResponse:
    """Search anime by title."""
    try:
        result = await _jikan(request).search(q, page, limit)
    except ValueError as exc:
        raise _bad_request(exc) from exc
    return AnimePageResponse.from_page(result)


@router.get("/anime/season/now", response_model=AnimePageResponse)
async def current_season(request: Request, page: int = 1, limit: int = DEFAULT_LIMIT) -> AnimePageResponse:
    return AnimePageResponse.from_page(await _jikan(request).season_now(page, limit))


@router.get("/anime/season/upcoming", response_model=AnimePageResponse)
async def upcoming_season(request: Request, page: int = 1, limit: int = DEFAULT_LIMIT) -> AnimePageResponse:
    return AnimePageResponse.from_page(await _jikan(request).season_upcoming(page, limit))


@router.get("/anime/season/{year}/{season}", response_model=AnimePageResponse)
async def season_archive(
    request: Request,
    year: Annotated[int, Path(ge=1900, le=2100)],
    season: str,
    page: int = 1,
) -> AnimePageResponse:
    """List anime for one season of one year (winter, spring, summer, fall)."""
    try:
        result = await _jikan(request).season(year, season, page)
    except ValueError as exc:
        raise _bad_request(exc) from exc
    return AnimePageResponse.from_page(result)


@router.get("/anime/top", response_model=AnimePageResponse)
async def top_anime(request: Request, page: int = 1, limit: int = DEFAULT_LIMIT) -> AnimePageResponse:
    return AnimePageResponse.from_page(await _jikan(request).top(page, limit))


# ---------------------------------------------------------------------------
# Single anime -- registered LAST
# ---------------------------------------------------------------------------


@router.get("/anime/{anime_id}", response_model=AnimeResponse)
async def get_anime(request: Request, anime_id: Annotated[int, Path(ge=1)]) -> AnimeResponse:
    """Full metadata for one anime by MyAnimeList id."""
    return AnimeResponse.from_anime(await _jikan(request).get_anime(anime_id))
