import os
from functools import lru_cache
from pathlib import Path
from typing import Optional


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        csrf_secret: str,
        page_size: int = 15,
        search_debounce_ms: int = 200,
        cache_ttl_secs: float = 300,
        refresh_interval_minutes: int = 15,
        view_idle_minutes: int = 30,
        max_views: int = 256,
        fallback_data_path: Optional[Path] = None,
        log_level: str = "INFO",
    ) -> None:
        if page_size < 1:
            raise ValueError("page_size must be at least 1")
        if search_debounce_ms < 0:
            raise ValueError("search_debounce_ms must not be negative")
        if max_views < 1:
            raise ValueError("max_views must be at least 1")
        self.database_url = database_url
        self.timezone = timezone
        self.csrf_secret = csrf_secret
        self.page_size = page_size
        self.search_debounce_ms = search_debounce_ms
        self.cache_ttl_secs = cache_ttl_secs
        self.refresh_interval_minutes = refresh_interval_minutes
        self.view_idle_minutes = view_idle_minutes
        self.max_views = max_views
        self.fallback_data_path = fallback_data_path
        self.log_level = log_level

    @property
    def search_debounce_secs(self) -> float:
        return self.search_debounce_ms / 1000


def _data_dir() -> Path:
    return Path(os.getenv("LEDGER_DATA_DIR", "./data")).resolve()


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _data_dir()
    default_db = data_dir / "ledger.db"
    database_url = os.getenv("LEDGER_DATABASE_URL", f"sqlite:///{default_db}")
    if database_url.startswith("sqlite:///") and ":memory:" not in database_url:
        data_dir.mkdir(parents=True, exist_ok=True)
    fallback_raw = os.getenv("LEDGER_FALLBACK_DATA")
    return Settings(
        database_url=database_url,
        timezone=os.getenv("LEDGER_TIMEZONE", "Europe/London"),
        csrf_secret=os.getenv(
            "LEDGER_CSRF_SECRET",
            "5b0d1c61e3c84a0f9a7e2e1f44c09b2d7a6f3e8c1d2b4a5968778695a4b3c2d1",
        ),
        page_size=int(os.getenv("LEDGER_PAGE_SIZE", "15")),
        search_debounce_ms=int(os.getenv("LEDGER_SEARCH_DEBOUNCE_MS", "200")),
        cache_ttl_secs=float(os.getenv("LEDGER_CACHE_TTL_SECS", "300")),
        refresh_interval_minutes=int(
            os.getenv("LEDGER_REFRESH_INTERVAL_MINUTES", "15")
        ),
        view_idle_minutes=int(os.getenv("LEDGER_VIEW_IDLE_MINUTES", "30")),
        max_views=int(os.getenv("LEDGER_MAX_VIEWS", "256")),
        fallback_data_path=Path(fallback_raw).resolve() if fallback_raw else None,
        log_level=os.getenv("LEDGER_LOG_LEVEL", "INFO"),
    )
