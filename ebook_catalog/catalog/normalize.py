"""Title/author cleanup, category guessing and catalog identity.

Every function here is pure. Keyword heuristics operate on lower-cased
English keywords and are applied the same way for every language.
"""

from __future__ import annotations

import hashlib
import html
import re
import unicodedata
from collections.abc import Iterable, Sequence

from ebook_catalog.catalog.models import (
    CATEGORY_ORDER,
    UNKNOWN_AUTHOR,
    NormalizedCandidate,
    RawCandidate,
)

WHITESPACE_RE = re.compile(r"\s+")
MARC_FRAGMENT_RE = re.compile(r"\s*\$[a-z]\b.*$", re.IGNORECASE | re.DOTALL)
LOOKUP_STRIP_RE = re.compile(r"[^a-z0-9]+")

ACADEMIC_TITLE_KEYWORDS: tuple[str, ...] = (
    "thesis",
    "dissertation",
    "proceedings",
    "transactions",
    "journal",
    "conference",
    "research",
    "report",
    "technical",
    "laboratory",
    "laboratories",
    "handbook",
    "manual",
    "treatise",
    "monograph",
    "lectures on",
    "notes on",
    "introduction to",
    "textbook",
    "course",
    "syllabus",
)

ACADEMIC_SUBJECT_KEYWORDS: tuple[str, ...] = (
    "theses",
    "dissertations",
    "periodicals",
    "journals",
    "proceedings",
    "transactions",
    "conference",
    "research",
    "statistics",
    "mathematics",
    "physics",
    "chemistry",
    "engineering",
    "medicine",
    "surgery",
    "anatomy",
    "pathology",
    "botany",
    "zoology",
    "geology",
    "astronomy",
    "laboratory",
    "textbooks",
)

# First match wins; anything unmatched is Fiction.
CATEGORY_RULES: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("Children's", ("children's", "childrens", "juvenile", "juvenile fiction")),
    ("Romance", ("romance", "love story", "love stories", "courtship", "marriage")),
    ("Mystery", ("mystery", "detective", "crime", "whodunit")),
    ("Science Fiction", ("science fiction", "sci-fi", "space travel", "spaceflight")),
    ("Fantasy", ("fantasy", "magic", "wizard", "dragons")),
    ("Horror", ("horror", "ghost story", "ghost stories", "gothic", "supernatural")),
    ("Comedy", ("comedy", "humor", "humour", "satire")),
    ("Drama", ("drama", "plays", "tragedy")),
    ("Western", ("western story", "western stories", "frontier", "cowboy")),
    ("Short Stories", ("short story", "short stories", "tales", "stories")),
    ("Mythic", ("myth", "mythology", "legend", "legends", "folklore", "fairy tale", "fairy tales")),
    ("Adventure", ("adventure", "treasure", "sea story", "sea stories", "pirate", "exploration")),
    ("Travel", ("travel", "voyage", "voyages", "journey", "journeys", "tour", "travels")),
    ("Poetry", ("poetry", "poems")),
    ("Biography", ("biography", "autobiography", "memoir", "memoirs")),
    ("History", ("history", "historical")),
    ("Nonfiction", ("nonfiction", "essays")),
)
DEFAULT_CATEGORY = "Fiction"


def collapse_whitespace(value: str) -> str:
    return WHITESPACE_RE.sub(" ", value).strip()


def normalize_apostrophes(value: str) -> str:
    return value.replace("’", "'")


def normalize_title(title: str | None) -> str:
    return html.unescape((title or "").strip()).strip()


def normalize_main_title(title: str | None) -> str:
    """Keep only the main title: no MARC ``$x`` fragments, nothing after ':'."""
    base = normalize_title(title)
    if not base:
        return ""
    without_marc = MARC_FRAGMENT_RE.sub("", base)
    before_colon = without_marc.split(":", 1)[0]
    return collapse_whitespace(before_colon)


def normalize_author(name: str | None) -> str:
    cleaned = collapse_whitespace(html.unescape((name or "").strip()))
    if not cleaned or cleaned.lower() == UNKNOWN_AUTHOR.lower():
        return UNKNOWN_AUTHOR
    return cleaned


def has_resolved_author(name: str | None) -> bool:
    value = (name or "").strip()
    return bool(value) and value.lower() != UNKNOWN_AUTHOR.lower()


def normalization_key(value: str | None) -> str:
    """Unicode-preserving identity form: NFKD, no combining marks, lower-case."""
    raw = (value or "").strip()
    if not raw:
        return ""
    decomposed = unicodedata.normalize("NFKD", raw)
    no_marks = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return collapse_whitespace(no_marks).lower()


def normalize_for_lookup(value: str | None) -> str:
    """ASCII-only form used when matching against OpenLibrary results."""
    raw = (value or "").strip().lower()
    if not raw:
        return ""
    decomposed = unicodedata.normalize("NFKD", raw)
    no_marks = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return collapse_whitespace(LOOKUP_STRIP_RE.sub(" ", no_marks))


def normalize_search_key(value: str | None) -> str:
    base = normalization_key(value)
    letters = "".join(ch if ch.isalnum() or ch == " " else " " for ch in base)
    return collapse_whitespace(letters)


def normalize_author_key(value: str | None) -> str:
    return normalization_key(normalize_apostrophes(value or ""))


def build_catalog_id(language: str, title: str, author: str) -> str:
    key = f"{language}::{normalization_key(title)}::{normalization_key(author)}"
    return hashlib.sha256(key.encode("utf-8")).hexdigest()[:32]


def title_looks_academic(title: str) -> bool:
    lowered = title.lower()
    return any(keyword in lowered for keyword in ACADEMIC_TITLE_KEYWORDS)


def subjects_look_academic(subjects: Iterable[str]) -> bool:
    hay = normalize_apostrophes(" • ".join(subjects)).lower()
    return any(keyword in hay for keyword in ACADEMIC_SUBJECT_KEYWORDS)


def guess_category(title: str, subjects: Sequence[str]) -> str:
    subject_text = " ".join(normalize_apostrophes(s).lower() for s in subjects)
    hay = f"{normalize_apostrophes(title).lower()} {subject_text}"
    for category, keywords in CATEGORY_RULES:
        if any(keyword in hay for keyword in keywords):
            return category
    return DEFAULT_CATEGORY


def category_rank(category: str) -> int:
    try:
        return CATEGORY_ORDER.index(category)
    except ValueError:
        return len(CATEGORY_ORDER) + 9999


def sort_categories(categories: Iterable[str]) -> list[str]:
    unique = list(dict.fromkeys(categories))
    known = [c for c in CATEGORY_ORDER if c in unique]
    rest = sorted(c for c in unique if c not in CATEGORY_ORDER)
    return known + rest


def is_generic_gutenberg_cover(url: str | None) -> bool:
    lowered = (url or "").lower()
    if not lowered:
        return False
    return "gutenberg.org" in lowered and "/cache/epub/" in lowered and "cover" in lowered


def dedupe_preserve(values: Iterable[str]) -> list[str]:
    out: list[str] = []
    seen: set[str] = set()
    for value in values:
        if not value or value in seen:
            continue
        seen.add(value)
        out.append(value)
    return out


def build_candidate(
    *,
    language: str,
    title: str,
    author: str,
    category: str,
    source: str,
    download_url: str | None,
    cover_url: str | None,
    source_id: str | None,
    source_popularity: int | None,
) -> NormalizedCandidate:
    return NormalizedCandidate(
        catalog_id=build_catalog_id(language, title, author),
        language=language,
        title=title,
        author=author,
        category=category,
        title_norm=normalization_key(title),
        author_norm=normalize_author_key(author),
        source=source,
        download_url=(download_url or "").strip() or None,
        cover_url=(cover_url or "").strip() or None,
        source_id=source_id,
        source_popularity=source_popularity,
    )


def rekey_candidate(
    candidate: NormalizedCandidate,
    *,
    title: str | None = None,
    author: str | None = None,
    cover_url: str | None = None,
) -> NormalizedCandidate:
    """Apply enriched fields and recompute the identity they feed into."""
    return build_candidate(
        language=candidate.language,
        title=(normalize_main_title(title) or candidate.title) if title else candidate.title,
        author=normalize_author(author) if author else candidate.author,
        category=candidate.category,
        source=candidate.source,
        download_url=candidate.download_url,
        cover_url=cover_url or candidate.cover_url,
        source_id=candidate.source_id,
        source_popularity=candidate.source_popularity,
    )


def normalize_candidate(raw: RawCandidate) -> NormalizedCandidate | None:
    """Clean one raw record, or return None when it must not enter the catalog."""
    full_title = normalize_title(raw.title)
    title = normalize_main_title(full_title)
    if not title:
        return None

    subjects = dedupe_preserve(normalize_apostrophes(s).strip() for s in raw.subjects)
    if title_looks_academic(full_title) or subjects_look_academic(subjects):
        return None

    popularity = raw.source_popularity
    if popularity is not None:
        popularity = max(0, int(popularity))

    return build_candidate(
        language=raw.language,
        title=title,
        author=normalize_author(raw.author),
        category=guess_category(full_title, subjects),
        source=raw.source,
        download_url=raw.download_url,
        cover_url=raw.cover_url,
        source_id=raw.source_id,
        source_popularity=popularity,
    )
