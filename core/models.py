from dataclasses import dataclass, field
from typing import Any, Optional

# ---------------------------------------------------------------------------
# Domain constants
# ---------------------------------------------------------------------------

# Jikan's season names. A domain rule -- not an API contract.
# All layers (api/, CLI) that need to validate a season import from here.
SEASONS = ("winter", "spring", "summer", "fall")


@dataclass
class NamedResource:
    mal_id: int
    name: str


@dataclass
class Images:
    image_url: Optional[str] = None
    small_image_url: Optional[str] = None
    large_image_url: Optional[str] = None


@dataclass
class Aired:
    start: Optional[str] = None  # ISO 8601 as reported upstream
    end: Optional[str] = None
    display: Optional[str] = None  # "Apr 3, 1998 to Apr 24, 1999"


@dataclass
class Anime:
    mal_id: int
    title: str
    url: Optional[str] = None
    title_english: Optional[str] = None
    title_japanese: Optional[str] = None
    type: Optional[str] = None  # TV | Movie | OVA | ...
    source: Optional[str] = None
    episodes: Optional[int] = None
    status: str = "Unknown"
    airing: bool = False
    aired: Aired = field(default_factory=Aired)
    duration: Optional[str] = None
    rating: Optional[str] = None
    score: Optional[float] = None
    scored_by: Optional[int] = None
    rank: Optional[int] = None
    synopsis: Optional[str] = None
    season: Optional[str] = None
    year: Optional[int] = None
    images: Images = field(default_factory=Images)
    producers: list[NamedResource] = field(default_factory=list)
    studios: list[NamedResource] = field(default_factory=list)
    genres: list[NamedResource] = field(default_factory=list)
    themes: list[NamedResource] = field(default_factory=list)


@dataclass
class Pagination:
    current_page: int = 1
    last_visible_page: int = 1
    has_next_page: bool = False


@dataclass
class AnimePage:
    items: list[Anime]
    pagination: Pagination


# ---------------------------------------------------------------------------
# Decoders (Jikan v4 JSON -> dataclasses)
#
# Raise ValueError on payloads that are missing the fields every record must
# have (mal_id, title). Optional fields tolerate absence and nulls.
# ---------------------------------------------------------------------------


def _named(entries: Optional[list[dict[str, Any]]]) -> list[NamedResource]:
    return [NamedResource(mal_id=int(e["mal_id"]), name=e.get("name", "")) for e in entries or [] if "mal_id" in e]


def anime_from_json(raw: dict[str, Any]) -> Anime:
    """Build an Anime from one Jikan anime object."""
    if not isinstance(raw, dict) or "mal_id" not in raw or "title" not in raw:
        raise ValueError("Anime record is missing mal_id or title")

    jpg = (raw.get("images") or {}).get("jpg") or {}
    aired = raw.get("aired") or {}
    return Anime(
        mal_id=int(raw["mal_id"]),
        title=raw["title"],
        url=raw.get("url"),
        title_english=raw.get("title_english"),
        title_japanese=raw.get("title_japanese"),
        type=raw.get("type"),
        source=raw.get("source"),
        episodes=raw.get("episodes"),
        status=raw.get("status") or "Unknown",
        airing=bool(raw.get("airing", False)),
        aired=Aired(start=aired.get("from"), end=aired.get("to"), display=aired.get("string")),
        duration=raw.get("duration"),
        rating=raw.get("rating"),
        score=raw.get("score"),
        scored_by=raw.get("scored_by"),
        rank=raw.get("rank"),
        synopsis=raw.get("synopsis"),
        season=raw.get("season"),
        year=raw.get("year"),
        images=Images(
            image_url=jpg.get("image_url"),
            small_image_url=jpg.get("small_image_url"),
            large_image_url=jpg.get("large_image_url"),
        ),
        producers=_named(raw.get("producers")),
        studios=_named(raw.get("studios")),
        genres=_named(raw.get("genres")),
        themes=_named(raw.get("themes")),
    )


def decode_anime_response(payload: dict[str, Any]) -> Anime:
    """Decode {"data": {...}} as returned by /anime/{id}/full."""
    if not isinstance(payload, dict) or "data" not in payload:
        raise ValueError("Anime response has no data field")
    return anime_from_json(payload["data"])


def decode_anime_page(payload: dict[str, Any]) -> AnimePage:
    """Decode {"pagination": {...}, "data": [...]} list responses."""
    if not isinstance(payload, dict) or not isinstance(payload.get("data"), list):
        raise ValueError("Anime list response has no data array")
    raw_pagination = payload.get("pagination") or {}
    current = int(raw_pagination.get("current_page", 1))
    return AnimePage(
        items=[anime_from_json(item) for item in payload["data"]],
        pagination=Pagination(
            current_page=current,
            last_visible_page=int(raw_pagination.get("last_visible_page", current)),
            has_next_page=bool(raw_pagination.get("has_next_page", False)),
        ),
    )
