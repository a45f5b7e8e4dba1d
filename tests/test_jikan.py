"""
tests/test_jikan.py -- Jikan client URL building and payload decoding.

Covers:
  - Every endpoint's URL, including url-encoding of the search query
  - Pagination clamping (page >= 1, 1 <= limit <= 25)
  - Season name validation
  - Decoding of single-anime and list payloads into dataclasses
  - Client methods route through the gateway with the right decoder
"""

from __future__ import annotations

import asyncio

import pytest

from conftest import FakeResponse, FakeSession, anime_payload, page_payload
from core.gateway import CacheAsideGateway
from core.jikan import JikanClient, clamp_limit, clamp_page, normalize_season
from core.models import Anime, AnimePage, decode_anime_page, decode_anime_response
from core.ratelimit import OutboundRateLimiter

BASE = "https://api.jikan.moe/v4"


@pytest.fixture
def client() -> JikanClient:
    gateway = CacheAsideGateway(None, OutboundRateLimiter(), session=FakeSession(FakeResponse(200, {})))
    return JikanClient(gateway)


class TestUrls:
    def test_anime_by_id(self, client) -> None:
        assert client.anime_url(1) == f"{BASE}/anime/1/full"

    def test_search_encodes_query(self, client) -> None:
        assert client.search_url("fullmetal alchemist & co", page=2, limit=10) == (
            f"{BASE}/anime?q=fullmetal+alchemist+%26+co&page=2&limit=10"
        )

    def test_seasons(self, client) -> None:
        assert client.season_now_url() == f"{BASE}/seasons/now?page=1&limit=25"
        assert client.season_upcoming_url(3, 5) == f"{BASE}/seasons/upcoming?page=3&limit=5"
        assert client.season_url(2023, "Fall", page=2) == f"{BASE}/seasons/2023/fall?page=2"

    def test_top(self, client) -> None:
        assert client.top_url() == f"{BASE}/top/anime?page=1&limit=25"

    def test_custom_base_url(self) -> None:
        gateway = CacheAsideGateway(None, OutboundRateLimiter(), session=FakeSession(FakeResponse(200, {})))
        assert JikanClient(gateway, "http://mirror.local/v4/").anime_url(7) == "http://mirror.local/v4/anime/7/full"

    def test_invalid_inputs(self, client) -> None:
        with pytest.raises(ValueError):
            client.anime_url(0)
        with pytest.raises(ValueError):
            client.search_url("   ")
        with pytest.raises(ValueError):
            client.season_url(2023, "autumn")


class TestClamping:
    @pytest.mark.parametrize("page,expected", [(None, 1), (-5, 1), (0, 1), (1, 1), (40, 40)])
    def test_page(self, page, expected) -> None:
        assert clamp_page(page) == expected

    @pytest.mark.parametrize("limit,expected", [(None, 25), (0, 1), (-3, 1), (10, 10), (25, 25), (100, 25)])
    def test_limit(self, limit, expected) -> None:
        assert clamp_limit(limit) == expected

    def test_season_normalization(self) -> None:
        assert normalize_season("  WINTER ") == "winter"


class TestDecoding:
    def test_single_anime(self) -> None:
        anime = decode_anime_response({"data": anime_payload(title_english="Cowboy Bebop", themes=[{"mal_id": 9, "name": "Space"}])})
        assert isinstance(anime, Anime)
        assert anime.mal_id == 1
        assert anime.studios[0].name == "Sunrise"
        assert anime.themes[0].name == "Space"
        assert anime.aired.display == "Apr 3, 1998 to Apr 24, 1999"
        assert anime.images.image_url == "https://cdn.example/1.jpg"

    def test_nulls_are_tolerated(self) -> None:
        anime = decode_anime_response(
            {"data": {"mal_id": 2, "title": "Untitled", "aired": None, "images": None, "genres": None, "status": None}}
        )
        assert anime.status == "Unknown"
        assert anime.genres == []
        assert anime.aired.start is None

    def test_page(self) -> None:
        page = decode_anime_page(page_payload(anime_payload(1), anime_payload(2, "Trigun"), has_next_page=True))
        assert isinstance(page, AnimePage)
        assert [a.title for a in page.items] == ["Cowboy Bebop", "Trigun"]
        assert page.pagination.has_next_page
        assert page.pagination.last_visible_page == 2

    @pytest.mark.parametrize("payload", [{}, {"data": None}, {"data": {"title": "no id"}}, []])
    def test_malformed_single(self, payload) -> None:
        with pytest.raises(ValueError):
            decode_anime_response(payload)

    def test_malformed_page(self) -> None:
        with pytest.raises(ValueError):
            decode_anime_page({"data": {"mal_id": 1}})


class TestClientFetch:
    def test_get_anime_decodes(self) -> None:
        http = FakeSession(FakeResponse(200, {"data": anime_payload(mal_id=30, title="Neon Genesis Evangelion")}))
        client = JikanClient(CacheAsideGateway(None, OutboundRateLimiter(), session=http))

        anime = asyncio.run(client.get_anime(30))
        assert anime.title == "Neon Genesis Evangelion"
        assert http.calls == [f"{BASE}/anime/30/full"]

    def test_season_archive_decodes_page(self) -> None:
        http = FakeSession(FakeResponse(200, page_payload(anime_payload(1))))
        client = JikanClient(CacheAsideGateway(None, OutboundRateLimiter(), session=http))

        page = asyncio.run(client.season(1998, "spring"))
        assert len(page.items) == 1
        assert http.calls == [f"{BASE}/seasons/1998/spring?page=1"]
