"""
Tests for application settings, crawl configuration and the CLI wiring.
"""

import pytest

from api.config import ColorStripFormatter, Settings
from crawler.cli import build_parser, build_sink, settings_from_args
from crawler.config import (
    ConcurrencyConfig,
    ExtractionConfig,
    config_from_settings,
    default_config,
    dev_config,
    get_site_profile,
    list_sites,
)
from crawler.storage import CsvSink, MultiSink


class TestSettings:
    """Test the Settings configuration class."""

    def test_settings_defaults(self):
        """Test that settings have sensible defaults."""
        from api.config import settings

        assert settings.api_host == "0.0.0.0"
        assert settings.api_port == 8000
        assert settings.log_level == "INFO"
        assert settings.crawl_profile == "default"
        assert settings.site == "airbnb"
        assert settings.headless is True

    def test_settings_database_url(self):
        from api.config import settings

        assert settings.database_url is not None
        assert "listings.db" in settings.database_url

    def test_settings_log_paths(self):
        from api.config import settings

        assert settings.log_file.name == "crawler.log"
        assert settings.log_file.parent == settings.log_dir

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("PRODUCT_WORKERS", "7")
        monkeypatch.setenv("CRAWL_PROFILE", "dev")
        settings = Settings()
        assert settings.product_workers == 7
        assert settings.crawl_profile == "dev"

    def test_color_strip_formatter(self):
        import logging
        formatter = ColorStripFormatter("%(message)s")
        record = logging.LogRecord("x", logging.INFO, __file__, 1, "\033[92m[OK]\033[0m done", None, None)
        assert formatter.format(record) == "[OK] done"


class TestCrawlConfig:
    """Test presets and overrides."""

    def test_default_preset(self):
        config = default_config()
        assert config.concurrency.location_workers == 3
        assert config.concurrency.product_workers == 3
        assert config.extraction.links_per_page == 5
        assert config.extraction.pages_per_seed == 2
        assert config.scrape_retry.max_retries == 3
        assert config.scrape_retry.initial_backoff == 2.0
        assert config.scrape_retry.max_backoff == 10.0
        assert config.timing.item_timeout == 70.0
        assert config.timing.run_timeout is None
        assert config.stealth.max_requests_per_second == 4.0

    def test_dev_preset(self):
        config = dev_config()
        assert config.concurrency.location_workers == 1
        assert config.concurrency.product_workers == 2
        assert config.stealth.random_delay_min == 2.0
        assert config.stealth.max_requests_per_second == 10.0

    def test_presets_are_independent(self):
        dev_config().timing.page_load_wait = 99.0
        assert default_config().timing.page_load_wait == 5.0

    def test_from_settings_overrides(self):
        settings = Settings(
            crawl_profile="dev", headless=False, product_workers=5,
            scrape_max_retries=1, save_max_retries=6, max_requests_per_second=2.5, run_timeout=600.0,
        )
        config = config_from_settings(settings)
        assert config.browser.headless is False
        assert config.concurrency.product_workers == 5
        assert config.concurrency.location_workers == 1
        assert config.scrape_retry.max_retries == 1
        assert config.save_retry.max_retries == 6
        assert config.stealth.max_requests_per_second == 2.5
        assert config.timing.run_timeout == 600.0

    def test_unknown_profile(self):
        with pytest.raises(ValueError):
            config_from_settings(Settings(crawl_profile="turbo"))

    def test_invalid_bounds(self):
        with pytest.raises(ValueError):
            ConcurrencyConfig(location_workers=0)
        with pytest.raises(ValueError):
            ExtractionConfig(pages_per_seed=3)

    def test_site_profiles(self):
        assert "airbnb" in list_sites()
        assert get_site_profile("airbnb").platform == "Airbnb"
        with pytest.raises(ValueError):
            get_site_profile("nowhere")


class TestCli:
    """Test argument handling."""

    def test_args_override_settings(self):
        args = build_parser().parse_args([
            "--profile", "dev", "--workers", "4", "--seed-workers", "2",
            "--headful", "--csv", "out.csv", "--log-level", "DEBUG", "--timeout", "900",
        ])
        settings = settings_from_args(args, base=Settings())
        assert settings.crawl_profile == "dev"
        assert settings.product_workers == 4
        assert settings.seed_workers == 2
        assert settings.headless is False
        assert settings.csv_path == "out.csv"
        assert settings.log_level == "DEBUG"
        assert settings.run_timeout == 900.0

    def test_defaults_leave_settings(self):
        args = build_parser().parse_args([])
        base = Settings()
        assert settings_from_args(args, base=base) == base

    def test_build_sink_csv_only(self, tmp_path):
        settings = Settings(csv_path=str(tmp_path / "out.csv"))
        sink = build_sink(settings, use_db=False)
        assert isinstance(sink, CsvSink)

    def test_build_sink_none(self):
        assert build_sink(Settings(), use_db=False) is None

    def test_build_sink_db_and_csv(self, tmp_path, monkeypatch):
        import api.database
        monkeypatch.setattr(api.database, "init_db", lambda: None)
        settings = Settings(csv_path=str(tmp_path / "out.csv"))
        assert isinstance(build_sink(settings), MultiSink)
