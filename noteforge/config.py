"""Application configuration via environment variables."""

import os

from pydantic_settings import BaseSettings
from typing import List, Optional

PACKAGE_DIR = os.path.dirname(os.path.abspath(__file__))
SYMBOLS_FILTER = os.path.join(PACKAGE_DIR, "filters", "symbols.lua")


class Settings(BaseSettings):
    # Server
    port: int = 3000
    cors_origins: List[str] = ["*"]
    log_level: str = "INFO"

    # Working storage
    work_dir: str = "/tmp/noteforge"
    work_dir_ttl_hours: int = 2
    max_upload_mb: int = 50

    # Emoji substitution
    emoji_cache_dir: str = "assets/emoji"
    emoji_base_url: str = "https://cdn.jsdelivr.net/gh/twitter/twemoji@14.0.2/assets/72x72/"
    emoji_inline_size: str = "1em"
    emoji_fetch_timeout_sec: float = 10.0

    # External tools
    pandoc_binary: str = "pandoc"
    libreoffice_binary: str = "libreoffice"
    # site-specific template with the "Symbols" style and fonts, e.g. assets/reference.docx
    reference_doc: Optional[str] = None
    lua_filters: List[str] = [SYMBOLS_FILTER]
    tool_timeout_sec: float = 300.0

    # Job processing
    concurrency_limit: int = 1
    artifact_ttl_minutes: float = 20
    job_record_ttl_minutes: float = 60
    cleanup_interval_minutes: float = 10

    # Time-left heuristics
    queue_slot_seconds: int = 3
    estimate_base_ms: int = 2000
    estimate_ms_per_kb: int = 100
    estimate_pdf_ms: int = 5000

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
