"""
Application Configuration
Loads settings from environment variables with sensible defaults.
"""

import logging
import re
from pydantic_settings import BaseSettings
from typing import List, Optional
from pathlib import Path


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database Configuration
    database_url: str = "sqlite:///./data/listings.db"

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # CORS Configuration
    cors_origins: List[str] = ["*"]

    # Crawl Configuration - None keeps the profile's value
    crawl_profile: str = "default"  # default or dev
    site: str = "airbnb"
    headless: bool = True
    seed_workers: Optional[int] = None
    product_workers: Optional[int] = None
    max_requests_per_second: Optional[float] = None
    scrape_max_retries: Optional[int] = None
    save_max_retries: Optional[int] = None
    run_timeout: Optional[float] = None
    csv_path: Optional[str] = None

    # Logging Configuration
    log_level: str = "INFO"
    log_format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    # Paths
    @property
    def log_dir(self) -> Path:
        """Get the log directory path."""
        return Path(__file__).parent.parent.parent / "logs"

    @property
    def log_file(self) -> Path:
        """Get the log file path."""
        return self.log_dir / "crawler.log"

    class Config:
        # Only load .env if it exists to avoid permission errors
        env_file = ".env" if __import__("pathlib").Path(".env").exists() else None
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"  # Ignore extra environment variables


class ColorStripFormatter(logging.Formatter):
    """Formatter that strips ANSI color codes from log messages."""
    ansi_escape = re.compile(r'\x1B(?:[@-Z\\-_]|\[[0-?]*[ -/]*[@-~])')

    def format(self, record):
        message = super().format(record)
        return self.ansi_escape.sub('', message)


def configure_logging(settings: "Settings", level: Optional[str] = None, log_file: bool = True):
    """
    Console handler with colors, file handler with colors stripped.

    Args:
        settings: Settings providing log format, level and directory
        level: Override for settings.log_level
        log_file: Also write to settings.log_file
    """
    console_handler = logging.StreamHandler()
    console_handler.setFormatter(logging.Formatter(settings.log_format))
    handlers = [console_handler]

    if log_file:
        settings.log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(settings.log_file, encoding='utf-8')
        file_handler.setFormatter(ColorStripFormatter(settings.log_format))
        handlers.append(file_handler)

    logging.basicConfig(
        level=getattr(logging, (level or settings.log_level).upper()),
        handlers=handlers,
        force=True  # Override any existing configuration
    )
    # Uvicorn access logs are noisy at INFO
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


# Global settings instance
settings = Settings()
