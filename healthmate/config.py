import os
from dataclasses import dataclass, field
from functools import lru_cache

from dotenv import load_dotenv

load_dotenv()


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be an integer, got {raw!r}")


def _env_list(name: str, default: str) -> list[str]:
    return [item.strip() for item in os.getenv(name, default).split(",") if item.strip()]


@dataclass(frozen=True)
class Settings:
    app_env: str = "production"
    database_url: str = "sqlite:///./healthmate.db"

    jwt_secret: str = "change-me-in-production"
    jwt_algorithm: str = "HS256"
    jwt_expire_minutes: int = 60 * 24 * 7

    gemini_api_key: str | None = None
    gemini_model: str = "gemini-2.5-flash"
    gemini_fallback_model: str = "gemini-2.0-pro"
    secondary_language: str = "Roman Urdu"
    file_fetch_timeout: int = 30
    analysis_timeout_seconds: int = 300

    storage_backend: str = "local"
    upload_dir: str = "./uploads"
    public_base_url: str = "http://localhost:8000"
    gcs_bucket: str | None = None
    max_upload_bytes: int = 10 * 1024 * 1024

    cors_origins: list[str] = field(default_factory=lambda: ["http://localhost:5173", "http://localhost:3000"])
    log_level: str = "INFO"

    @property
    def is_development(self) -> bool:
        return self.app_env.lower() == "development"


@lru_cache
def get_settings() -> Settings:
    """Read settings from the environment (and `.env`) once per process."""
    return Settings(
        app_env=os.getenv("APP_ENV", "production"),
        database_url=os.getenv("DATABASE_URL", "sqlite:///./healthmate.db"),
        jwt_secret=os.getenv("JWT_SECRET", "change-me-in-production"),
        jwt_algorithm=os.getenv("JWT_ALGORITHM", "HS256"),
        jwt_expire_minutes=_env_int("JWT_EXPIRE_MINUTES", 60 * 24 * 7),
        gemini_api_key=os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY"),
        gemini_model=os.getenv("GEMINI_MODEL", "gemini-2.5-flash"),
        gemini_fallback_model=os.getenv("GEMINI_FALLBACK_MODEL", "gemini-2.0-pro"),
        secondary_language=os.getenv("SECONDARY_LANGUAGE", "Roman Urdu"),
        file_fetch_timeout=_env_int("FILE_FETCH_TIMEOUT", 30),
        analysis_timeout_seconds=_env_int("ANALYSIS_TIMEOUT_SECONDS", 300),
        storage_backend=os.getenv("STORAGE_BACKEND", "local").lower(),
        upload_dir=os.getenv("UPLOAD_DIR", "./uploads"),
        public_base_url=os.getenv("PUBLIC_BASE_URL", "http://localhost:8000").rstrip("/"),
        gcs_bucket=os.getenv("GCS_BUCKET"),
        max_upload_bytes=_env_int("MAX_UPLOAD_BYTES", 10 * 1024 * 1024),
        cors_origins=_env_list("CORS_ORIGINS", "http://localhost:5173,http://localhost:3000"),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )
