"""
formatter.py -- Renders Anime / AnimePage to terminal output or JSON.
"""

import json
import os
import re
import sys
from dataclasses import asdict
from typing import Optional, Union

from .models import Anime, AnimePage

W = 68  # output width

# ---------------------------------------------------------------------------
# ANSI color control
# ---------------------------------------------------------------------------

_ANSI_RE = re.compile(r"\x1b\[[0-9;]*m")


def strip_ansi(text: str) -> str:
    """Remove ANSI escape sequences from a string."""
    return _ANSI_RE.sub("", text)


def _use_color() -> bool:
    """Return True if stdout is a TTY and color has not been disabled.

    Respects NO_COLOR env var (https://no-color.org) and checks sys.stdout.isatty().
    """
    if os.environ.get("NO_COLOR"):
        return False
    if os.environ.get("FORCE_COLOR"):
        return True
    return hasattr(sys.stdout, "isatty") and sys.stdout.isatty()


_color_enabled: Optional[bool] = None  # None = auto-detect


def disable_color() -> None:
    """Force-disable color output (called when --no-color flag is set)."""
    global _color_enabled
    _color_enabled = False


def _color_active() -> bool:
    if _color_enabled is not None:
        return _color_enabled
    return _use_color()


def _reset() -> str:
    return "\033[0m" if _color_active() else ""


def _bold() -> str:
    return "\033[1m" if _color_active() else ""


def _dim() -> str:
    return "\033[2m" if _color_active() else ""


def _green() -> str:
    return "\033[92m" if _color_active() else ""


# ---------------------------------------------------------------------------
# Layout helpers
# ---------------------------------------------------------------------------


def _bar(char: str = "═") -> str:
    return char * W


def _section(title: str) -> str:
    return f"\n  {_bold()}{title}{_reset()}\n  {'─' * (W - 2)}"


def _wrap(text: str, indent: int = 4, width: int = W) -> str:
    """Simple word-wrap at `width` chars with leading indent."""
    words = text.split()
    lines = []
    line = " " * indent
    for word in words:
        if len(line) + len(word) + 1 > width:
            lines.append(line)
            line = " " * indent + word
        else:
            line += ("" if line.strip() == "" else " ") + word
    if line.strip():
        lines.append(line)
    return "\n".join(lines)


def _names(resources) -> str:
    return ", ".join(r.name for r in resources) or "-"


# ---------------------------------------------------------------------------
# Terminal renderers
# ---------------------------------------------------------------------------


def print_anime(anime: Anime) -> None:
    bold = _bold()
    reset = _reset()

    print(f"\n{bold}{_bar()}{reset}")
    airing_tag = f"  {_green()}{bold}AIRING{reset}" if anime.airing else ""
    print(f"  {bold}{anime.title}{reset}  │  #{anime.mal_id}{airing_tag}")
    if anime.title_english and anime.title_english != anime.title:
        print(f"  {anime.title_english}")
    print(f"{bold}{_bar()}{reset}")

    print(_section("OVERVIEW"))
    score = f"{anime.score:.2f}" if anime.score is not None else "N/A"
    for label, val in [
        ("Type", anime.type),
        ("Episodes", anime.episodes),
        ("Status", anime.status),
        ("Aired", anime.aired.display),
        ("Season", f"{anime.season} {anime.year}" if anime.season and anime.year else None),
        ("Score", f"{score} (rank #{anime.rank})" if anime.rank else score),
        ("Rating", anime.rating),
        ("Source", anime.source),
    ]:
        if val is not None:
            print(f"    {label:<12} {val}")

    print(_section("CREDITS"))
    print(f"    {'Studios':<12} {_names(anime.studios)}")
    print(f"    {'Genres':<12} {_names(anime.genres)}")
    if anime.themes:
        print(f"    {'Themes':<12} {_names(anime.themes)}")

    if anime.synopsis:
        print(_section("SYNOPSIS"))
        print(_wrap(anime.synopsis))

    if anime.url:
        print(f"\n    {_dim()}{anime.url}{reset}")
    print(f"\n{_bar()}\n")


def print_page(page: AnimePage, title: str) -> None:
    """Print a one-line-per-anime table for a listing response."""
    bold = _bold()
    reset = _reset()
    pg = page.pagination

    print(f"\n{bold}{_bar()}{reset}")
    print(f"  {bold}{title} — page {pg.current_page} of {pg.last_visible_page}{reset}")
    print(f"{bold}{_bar()}{reset}")

    if not page.items:
        print("\n    No results.")
    for anime in page.items:
        score = f"{anime.score:.2f}" if anime.score is not None else " N/A"
        kind = (anime.type or "?")[:6]
        eps = str(anime.episodes) if anime.episodes is not None else "?"
        print(f"  {anime.mal_id:>7}  {score:>5}  {kind:<6} {eps:>4}ep  {anime.title[:40]}")

    if pg.has_next_page:
        print(f"\n  {_dim()}More results: --page {pg.current_page + 1}{reset}")
    print(f"\n{_bar()}\n")


# ---------------------------------------------------------------------------
# JSON export
# ---------------------------------------------------------------------------


def to_json(result: Union[Anime, AnimePage]) -> str:
    """Return the dataclass as pretty-printed JSON."""
    return json.dumps(asdict(result), indent=2, ensure_ascii=False)
