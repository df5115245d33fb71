"""
Crawler configuration.

Defaults can be overridden from a ``.env`` file or ``NOVELCRAWLER_*``
environment variables, and then from command-line flags.
"""

import dataclasses
import os
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from .errors import ConfigError

ENV_PREFIX = "NOVELCRAWLER_"


def load_env(env_path: Optional[Path] = None) -> None:
    """Load .env from the working directory if present. Existing variables win."""
    env_path = env_path or Path.cwd() / ".env"
    if env_path.exists():
        load_dotenv(dotenv_path=env_path, override=False)


def _env(name: str, default: str) -> str:
    return os.getenv(f"{ENV_PREFIX}{name}", default)


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(f"{ENV_PREFIX}{name}")
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class CrawlerConfig:
    base_url: str = "https://freewebnovel.com"
    output_dir: Path = Path("output")
    library_dir: Path = Path("docs/epubs")
    pages: int = 1
    workers: int = 4
    concurrency: int = 3
    delay: float = 1.0  # seconds between chapter requests
    max_chapters: int = 2000  # 0 disables the ceiling
    refresh: bool = False
    fetch_retries: int = 5
    fetch_retry_delay: float = 3.0
    fetch_timeout: float = 30.0
    worker_start_timeout: float = 30.0
    log_level: str = "INFO"
    log_dir: Path = Path("logs")
    log_to_file: bool = False

    @property
    def listing_cache_path(self) -> Path:
        return self.output_dir / "novel-list.json"

    @property
    def database_path(self) -> Path:
        return self.library_dir / "library.db"

    @classmethod
    def from_env(cls, load_dotenv_file: bool = True) -> "CrawlerConfig":
        """Build a config from defaults overlaid with NOVELCRAWLER_* variables."""
        if load_dotenv_file:
            load_env()
        d = cls()
        try:
            return cls(
                base_url=_env("BASE_URL", d.base_url),
                output_dir=Path(_env("OUTPUT_DIR", str(d.output_dir))),
                library_dir=Path(_env("LIBRARY_DIR", str(d.library_dir))),
                pages=int(_env("PAGES", str(d.pages))),
                workers=int(_env("WORKERS", str(d.workers))),
                concurrency=int(_env("CONCURRENCY", str(d.concurrency))),
                delay=float(_env("DELAY", str(d.delay))),
                max_chapters=int(_env("MAX_CHAPTERS", str(d.max_chapters))),
                refresh=_env_bool("REFRESH", d.refresh),
                fetch_retries=int(_env("FETCH_RETRIES", str(d.fetch_retries))),
                fetch_retry_delay=float(_env("FETCH_RETRY_DELAY", str(d.fetch_retry_delay))),
                fetch_timeout=float(_env("FETCH_TIMEOUT", str(d.fetch_timeout))),
                worker_start_timeout=float(_env("WORKER_START_TIMEOUT", str(d.worker_start_timeout))),
                log_level=_env("LOG_LEVEL", d.log_level),
                log_dir=Path(_env("LOG_DIR", str(d.log_dir))),
                log_to_file=_env_bool("LOG_TO_FILE", d.log_to_file),
            )
        except ValueError as e:
            raise ConfigError(f"Invalid {ENV_PREFIX}* environment value: {e}") from e

    def with_overrides(self, **overrides) -> "CrawlerConfig":
        """Return a copy with every non-None override applied."""
        values = {k: v for k, v in overrides.items() if v is not None}
        for key in ("output_dir", "library_dir", "log_dir"):
            if key in values:
                values[key] = Path(values[key])
        return dataclasses.replace(self, **values)

    def validate(self) -> List[str]:
        """Return a list of validation error messages. Empty list means valid."""
        errors: List[str] = []
        for name in ("pages", "workers", "concurrency"):
            if getattr(self, name) < 1:
                errors.append(f"'{name}' must be at least 1")
        for name in ("delay", "fetch_retry_delay", "max_chapters", "fetch_retries"):
            if getattr(self, name) < 0:
                errors.append(f"'{name}' must not be negative")
        for name in ("fetch_timeout", "worker_start_timeout"):
            if getattr(self, name) <= 0:
                errors.append(f"'{name}' must be positive")
        if not self.base_url.startswith(("http://", "https://")):
            errors.append("'base_url' must be an absolute http(s) URL")
        if self.log_level.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            errors.append(f"'log_level' must be a standard level name, got {self.log_level!r}")
        return errors

    def ensure_valid(self) -> "CrawlerConfig":
        errors = self.validate()
        if errors:
            raise ConfigError("; ".join(errors))
        return self
