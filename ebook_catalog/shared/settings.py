from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel, Field

APP_LEARNING_LANGS: tuple[str, ...] = ("de", "en", "es", "fr", "it", "pl", "ru", "bn")


def _env_int(name: str, *, default: int, minimum: int, maximum: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(float(raw.strip()))
    except ValueError:
        return default
    return max(minimum, min(maximum, value))


def _env_langs(name: str, default: str) -> tuple[str, ...]:
    raw = os.getenv(name, default)
    out: list[str] = []
    for part in raw.split(","):
        lang = normalize_lang(part)
        if lang and lang not in out:
            out.append(lang)
    return tuple(out)


def normalize_lang(value: object) -> str | None:
    if not isinstance(value, str):
        return None
    trimmed = value.strip().lower()
    if not trimmed:
        return None
    primary = trimmed.replace("_", "-").split("-", 1)[0]
    return primary or None


class Settings(BaseModel):
    data_dir: Path = Path("data")
    sqlite_path: Path = Path("data/ebook_catalog.sqlite3")
    source_ranks_path: Path | None = None
    user_agent: str = Field(default="ebook-catalog/0.1 (catalog-sync)")
    browser_user_agent: str = Field(
        default=(
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
        )
    )
    default_lang: str = "en"
    sync_langs: tuple[str, ...] = ("en", "de")

    http_timeout_seconds: float = 6.0
    metadata_timeout_seconds: float = 3.5
    manybooks_timeout_seconds: float = 9.0
    max_retries: int = 3
    backoff_start_seconds: float = 0.8
    backoff_cap_seconds: float = 8.0
    backoff_jitter_seconds: float = 0.2

    circuit_cooldown_seconds: float = 3600.0
    circuit_warn_throttle_seconds: float = 900.0

    gutendex_limit: int = 1200
    gutendex_max_pages: int = 80
    gutendex_page_delay_seconds: float = 0.15
    wikisource_limit: int = 600
    wikisource_allpages_limit: int = 3500
    wikisource_allpages_langs: tuple[str, ...] = ("ru", "bn")
    manybooks_limit: int = 350
    wolne_lektury_limit: int = 2500

    enrich_on_sync: bool = True
    enrich_max_items: int = 80
    enrich_concurrency: int = 6
    lookup_ttl_seconds: float = 30 * 24 * 3600.0
    lookup_negative_ttl_seconds: float = 6 * 3600.0
    lookup_cache_max_entries: int = 20_000
    response_cache_ttl_seconds: float = 600.0

    upsert_batch_size: int = 400
    counts_rebuild_throttle_seconds: float = 60.0

    auto_sync: bool = False
    auto_sync_interval_seconds: float = 6 * 3600.0

    def ensure_directories(self) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.sqlite_path.parent.mkdir(parents=True, exist_ok=True)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = Path(os.getenv("EBOOK_CATALOG_DATA_DIR", "data"))
    ranks_path = os.getenv("EBOOK_CATALOG_SOURCE_RANKS")

    settings = Settings(
        data_dir=data_dir,
        sqlite_path=Path(
            os.getenv("EBOOK_CATALOG_SQLITE_PATH", str(data_dir / "ebook_catalog.sqlite3"))
        ),
        source_ranks_path=Path(ranks_path) if ranks_path else None,
        user_agent=os.getenv("EBOOK_CATALOG_USER_AGENT", "ebook-catalog/0.1 (catalog-sync)"),
        default_lang=normalize_lang(os.getenv("EBOOK_CATALOG_DEFAULT_LANG", "en")) or "en",
        sync_langs=_env_langs("EBOOK_CATALOG_LANGS", "en,de"),
        http_timeout_seconds=float(os.getenv("EBOOK_CATALOG_HTTP_TIMEOUT", "6")),
        max_retries=_env_int("EBOOK_CATALOG_MAX_RETRIES", default=3, minimum=0, maximum=10),
        gutendex_limit=_env_int("EBOOK_CATALOG_GUTENDEX_LIMIT", default=1200, minimum=200, maximum=5000),
        gutendex_max_pages=_env_int("EBOOK_CATALOG_GUTENDEX_MAX_PAGES", default=80, minimum=10, maximum=400),
        gutendex_page_delay_seconds=_env_int(
            "EBOOK_CATALOG_GUTENDEX_PAGE_DELAY_MS", default=150, minimum=0, maximum=2000
        )
        / 1000.0,
        wikisource_limit=_env_int("EBOOK_CATALOG_WIKISOURCE_LIMIT", default=600, minimum=100, maximum=5000),
        wikisource_allpages_limit=_env_int(
            "EBOOK_CATALOG_WIKISOURCE_ALLPAGES_LIMIT", default=3500, minimum=200, maximum=12000
        ),
        wikisource_allpages_langs=_env_langs("EBOOK_CATALOG_WIKISOURCE_ALLPAGES_LANGS", "ru,bn"),
        manybooks_limit=_env_int("EBOOK_CATALOG_MANYBOOKS_LIMIT", default=350, minimum=0, maximum=5000),
        wolne_lektury_limit=_env_int("EBOOK_CATALOG_WOLNE_LEKTURY_LIMIT", default=2500, minimum=0, maximum=5000),
        enrich_on_sync=os.getenv("EBOOK_CATALOG_ENRICH_ON_SYNC", "1").strip().lower() not in {"0", "false", "no"},
        enrich_max_items=_env_int("EBOOK_CATALOG_ENRICH_MAX", default=80, minimum=0, maximum=1000),
        enrich_concurrency=_env_int("EBOOK_CATALOG_ENRICH_CONCURRENCY", default=6, minimum=1, maximum=32),
        upsert_batch_size=_env_int("EBOOK_CATALOG_UPSERT_BATCH", default=400, minimum=1, maximum=5000),
        auto_sync=os.getenv("EBOOK_CATALOG_AUTO_SYNC", "0").strip().lower() in {"1", "true", "yes"},
        auto_sync_interval_seconds=float(
            _env_int("EBOOK_CATALOG_AUTO_SYNC_INTERVAL_MINUTES", default=360, minimum=5, maximum=10080) * 60
        ),
    )
    return settings
