"""
Tests for configuration loading and validation.
"""

import os
from pathlib import Path

import pytest

from novelcrawler.config import CrawlerConfig, load_env
from novelcrawler.errors import ConfigError


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Remove any NOVELCRAWLER_* variables from the test environment."""
    for key in list(os.environ):
        if key.startswith("NOVELCRAWLER_"):
            monkeypatch.delenv(key)


class TestDefaults:

    def test_default_values(self):
        config = CrawlerConfig.from_env(load_dotenv_file=False)

        assert config.base_url == "https://freewebnovel.com"
        assert config.workers == 4
        assert config.concurrency == 3
        assert config.delay == 1.0
        assert config.max_chapters == 2000
        assert config.fetch_retries == 5
        assert config.refresh is False
        assert config.validate() == []

    def test_derived_paths(self):
        config = CrawlerConfig(output_dir=Path("out"), library_dir=Path("lib"))

        assert config.listing_cache_path == Path("out") / "novel-list.json"
        assert config.database_path == Path("lib") / "library.db"


class TestEnvironment:

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("NOVELCRAWLER_WORKERS", "8")
        monkeypatch.setenv("NOVELCRAWLER_DELAY", "0.25")
        monkeypatch.setenv("NOVELCRAWLER_OUTPUT_DIR", "/tmp/books")
        monkeypatch.setenv("NOVELCRAWLER_REFRESH", "yes")
        monkeypatch.setenv("NOVELCRAWLER_LOG_TO_FILE", "0")

        config = CrawlerConfig.from_env(load_dotenv_file=False)

        assert config.workers == 8
        assert config.delay == 0.25
        assert config.output_dir == Path("/tmp/books")
        assert config.refresh is True
        assert config.log_to_file is False

    def test_bad_number_raises_config_error(self, monkeypatch):
        monkeypatch.setenv("NOVELCRAWLER_WORKERS", "many")

        with pytest.raises(ConfigError):
            CrawlerConfig.from_env(load_dotenv_file=False)

    def test_dotenv_file_does_not_override_environment(self, tmp_path, monkeypatch):
        # Register both variables so monkeypatch removes whatever load_env sets
        monkeypatch.setenv("NOVELCRAWLER_PAGES", "placeholder")
        monkeypatch.delenv("NOVELCRAWLER_PAGES")
        monkeypatch.setenv("NOVELCRAWLER_WORKERS", "2")

        env_file = tmp_path / ".env"
        env_file.write_text("NOVELCRAWLER_PAGES=6\nNOVELCRAWLER_WORKERS=9\n", encoding="utf-8")
        load_env(env_file)

        config = CrawlerConfig.from_env(load_dotenv_file=False)
        assert config.pages == 6
        assert config.workers == 2

    def test_missing_dotenv_file_is_fine(self, tmp_path):
        load_env(tmp_path / ".env")


class TestOverridesAndValidation:

    def test_with_overrides_ignores_none(self):
        config = CrawlerConfig().with_overrides(workers=None, pages=3, output_dir="books")

        assert config.workers == 4
        assert config.pages == 3
        assert config.output_dir == Path("books")

    def test_validate_reports_every_problem(self):
        config = CrawlerConfig(workers=0, concurrency=0, delay=-1, base_url="ftp://x", log_level="LOUD")
        errors = config.validate()

        assert len(errors) == 5
        assert any("workers" in e for e in errors)
        assert any("base_url" in e for e in errors)

    def test_ensure_valid(self):
        assert CrawlerConfig().ensure_valid() == CrawlerConfig()
        with pytest.raises(ConfigError, match="pages"):
            CrawlerConfig(pages=0).ensure_valid()
