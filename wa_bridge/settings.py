"""Configuration for the WhatsApp CRM bridge."""
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent

# Override aliases, first non-empty wins
INBOUND_WEBHOOK_ENV = ("INBOUND_WEBHOOK_URL", "N8N_WEBHOOK_INBOUND_URL", "CRM_WEBHOOK_URL")
OUTBOUND_WEBHOOK_ENV = ("OUTBOUND_WEBHOOK_URL", "N8N_WEBHOOK_URL")


def _first_env(names: Tuple[str, ...]) -> Optional[str]:
    for name in names:
        value = os.getenv(name)
        if value and value.strip():
            return value.strip()
    return None


@dataclass(frozen=True)
class Settings:
    """Process-wide settings, built once at startup and passed to constructors."""

    # Logging
    log_level: str = "INFO"
    logs_dir: Path = BASE_DIR / "logs"
    betterstack_source_token: Optional[str] = None
    betterstack_ingest_host: Optional[str] = None

    # HTTP server
    host: str = "0.0.0.0"
    port: int = 3001
    api_key: str = ""
    rate_limit_window_ms: int = 60000
    rate_limit_max_requests: int = 20

    # CRM
    crm_url: str = "http://localhost:3000"
    crm_api_key: str = ""
    inbound_webhook_override: Optional[str] = None
    outbound_webhook_override: Optional[str] = None

    # Send queue
    max_retries: int = 3
    retry_delay_ms: int = 1000

    # Caches
    dedupe_cache_size: int = 1000
    dedupe_ttl_ms: int = 3600000
    image_cache_max_size_mb: int = 100
    image_cache_ttl_ms: int = 3600000

    # Audit sink (disabled when unset)
    database_url: Optional[str] = None

    # Chat session backend, "package.module:factory"
    session_backend: Optional[str] = None

    @classmethod
    def from_env(cls, dotenv: bool = True) -> "Settings":
        """Read settings from the environment (and `.env` when present)."""
        if dotenv:
            load_dotenv()

        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            logs_dir=Path(os.getenv("LOGS_DIR", str(BASE_DIR / "logs"))),
            betterstack_source_token=os.getenv("BETTERSTACK_SOURCE_TOKEN"),
            betterstack_ingest_host=os.getenv("BETTERSTACK_INGEST_HOST"),
            host=os.getenv("HOST", "0.0.0.0"),
            port=int(os.getenv("PORT", "3001")),
            api_key=os.getenv("API_KEY", ""),
            rate_limit_window_ms=int(os.getenv("RATE_LIMIT_WINDOW_MS", "60000")),
            rate_limit_max_requests=int(os.getenv("RATE_LIMIT_MAX_REQUESTS", "20")),
            crm_url=os.getenv("CRM_URL", "http://localhost:3000").rstrip("/"),
            crm_api_key=os.getenv("CRM_API_KEY", ""),
            inbound_webhook_override=_first_env(INBOUND_WEBHOOK_ENV),
            outbound_webhook_override=_first_env(OUTBOUND_WEBHOOK_ENV),
            max_retries=int(os.getenv("MAX_RETRIES", "3")),
            retry_delay_ms=int(os.getenv("RETRY_DELAY_MS", "1000")),
            dedupe_cache_size=int(os.getenv("DEDUPE_CACHE_SIZE", "1000")),
            dedupe_ttl_ms=int(os.getenv("DEDUPE_TTL_MS", "3600000")),
            image_cache_max_size_mb=int(os.getenv("IMAGE_CACHE_MAX_SIZE_MB", "100")),
            image_cache_ttl_ms=int(os.getenv("IMAGE_CACHE_TTL_MS", "3600000")),
            database_url=os.getenv("DATABASE_URL") or None,
            session_backend=os.getenv("SESSION_BACKEND") or None,
        )

    def validate(self) -> None:
        """Validate required configuration."""
        errors = []

        if not self.session_backend:
            errors.append("SESSION_BACKEND is required")
        elif ":" not in self.session_backend:
            errors.append(f"SESSION_BACKEND must look like 'module:factory': {self.session_backend}")

        if not self.crm_url.startswith(("http://", "https://")):
            errors.append(f"CRM_URL must be an http(s) URL: {self.crm_url}")

        if self.max_retries < 0:
            errors.append("MAX_RETRIES must be >= 0")
        if self.retry_delay_ms < 0:
            errors.append("RETRY_DELAY_MS must be >= 0")
        if self.dedupe_cache_size < 1:
            errors.append("DEDUPE_CACHE_SIZE must be >= 1")
        if self.image_cache_max_size_mb < 0:
            errors.append("IMAGE_CACHE_MAX_SIZE_MB must be >= 0")

        try:
            self.logs_dir.mkdir(parents=True, exist_ok=True)
        except Exception as e:
            errors.append(f"Cannot create LOGS_DIR: {e}")

        if errors:
            raise ValueError("Config errors:\n  " + "\n  ".join(errors))

    @property
    def retry_delay(self) -> float:
        return self.retry_delay_ms / 1000

    @property
    def dedupe_ttl(self) -> float:
        return self.dedupe_ttl_ms / 1000

    @property
    def image_cache_max_bytes(self) -> int:
        return self.image_cache_max_size_mb * 1024 * 1024

    @property
    def image_cache_ttl(self) -> float:
        return self.image_cache_ttl_ms / 1000
