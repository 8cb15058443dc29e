from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from errors import ConfigError

ROOT_DIR = Path(__file__).resolve().parent

_STORE_BACKENDS = frozenset({"local", "supabase", "sheets"})


@dataclass(frozen=True)
class Settings:
    template_store: str
    template_store_dir: Path
    supabase_url: str
    supabase_anon_key: str
    supabase_jwt_secret: str
    google_spreadsheet_id: str
    google_service_account_file: str
    fonts_dir: Path
    cors_origins: tuple[str, ...]
    log_level: str


def _env(name: str, default: str = "") -> str:
    return os.environ.get(name, default).strip()


def load_settings() -> Settings:
    """Read settings from the environment (call load_dotenv() first)."""
    backend = _env("TEMPLATE_STORE", "local").lower()
    if backend not in _STORE_BACKENDS:
        raise ConfigError(
            f"TEMPLATE_STORE must be one of {sorted(_STORE_BACKENDS)}, got {backend!r}"
        )

    settings = Settings(
        template_store=backend,
        template_store_dir=Path(_env("TEMPLATE_STORE_DIR") or ROOT_DIR / "templates_store"),
        supabase_url=_env("SUPABASE_URL").rstrip("/"),
        supabase_anon_key=_env("SUPABASE_ANON_KEY"),
        supabase_jwt_secret=_env("SUPABASE_JWT_SECRET"),
        google_spreadsheet_id=_env("GOOGLE_SPREADSHEET_ID"),
        google_service_account_file=_env("GOOGLE_SERVICE_ACCOUNT_FILE"),
        fonts_dir=Path(_env("FONTS_DIR") or ROOT_DIR / "fonts"),
        cors_origins=tuple(
            origin.strip()
            for origin in _env(
                "CORS_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173"
            ).split(",")
            if origin.strip()
        ),
        log_level=_env("LOG_LEVEL", "INFO").upper(),
    )

    if backend == "supabase" and not (settings.supabase_url and settings.supabase_anon_key):
        raise ConfigError("TEMPLATE_STORE=supabase requires SUPABASE_URL and SUPABASE_ANON_KEY.")
    if backend == "sheets" and not (
        settings.google_spreadsheet_id and settings.google_service_account_file
    ):
        raise ConfigError(
            "TEMPLATE_STORE=sheets requires GOOGLE_SPREADSHEET_ID and GOOGLE_SERVICE_ACCOUNT_FILE."
        )
    return settings
