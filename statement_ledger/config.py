"""Service settings read from the environment (.env is loaded by main)."""
import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Optional

DEFAULT_ORIGINS = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
]


def _clean_key(value: Optional[str]) -> Optional[str]:
    """Empty keys and unresolved build placeholders ("undefined") count as missing."""
    if not value:
        return None
    value = value.strip()
    if not value or "undefined" in value:
        return None
    return value


@dataclass
class Settings:
    deepseek_api_key: Optional[str] = None
    deepseek_base_url: str = "https://api.deepseek.com"
    deepseek_model: str = "deepseek-chat"
    gemini_api_key: Optional[str] = None
    gemini_model: str = "gemini-2.5-flash"
    provider_timeout_seconds: float = 120.0
    allowed_origins: list[str] = field(default_factory=lambda: list(DEFAULT_ORIGINS))
    max_file_size_mb: int = 20
    store_dir: Optional[str] = None
    log_level: str = "INFO"

    @property
    def max_file_size(self) -> int:
        return self.max_file_size_mb * 1024 * 1024

    @classmethod
    def from_env(cls) -> "Settings":
        origins_raw = os.environ.get("ALLOWED_ORIGINS", "").strip()
        if origins_raw:
            origins = [o.strip().rstrip("/") for o in origins_raw.split(",") if o.strip()]
        else:
            origins = list(DEFAULT_ORIGINS)
        return cls(
            deepseek_api_key=_clean_key(os.environ.get("DEEPSEEK_API_KEY")),
            deepseek_base_url=os.environ.get("DEEPSEEK_BASE_URL", "https://api.deepseek.com").rstrip("/"),
            deepseek_model=os.environ.get("DEEPSEEK_MODEL", "deepseek-chat"),
            gemini_api_key=_clean_key(os.environ.get("GEMINI_API_KEY") or os.environ.get("API_KEY")),
            gemini_model=os.environ.get("GEMINI_MODEL", "gemini-2.5-flash"),
            provider_timeout_seconds=float(os.environ.get("PROVIDER_TIMEOUT_SECONDS", "120")),
            allowed_origins=origins,
            max_file_size_mb=int(os.environ.get("MAX_FILE_SIZE_MB", "20")),
            store_dir=os.environ.get("STATEMENT_STORE_DIR") or None,
            log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_env()
