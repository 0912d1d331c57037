"""Configuration objects and constants for the extraction engine."""

from __future__ import annotations

from dataclasses import dataclass

DEFAULT_ESCALATION_THRESHOLD = 13
DEFAULT_MAX_PAGINATION_PAGES = 30
DEFAULT_LOGO_MAX_SIDE = 100
# Watermark/logo size seen on pagination-driven readers.
LOGO_EXACT_SIZE = (79, 97)
DESKTOP_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36"
)


@dataclass
class ExtractionConfig:
    """Top-level settings that control rendering, extraction and download."""

    escalation_threshold: int = DEFAULT_ESCALATION_THRESHOLD
    max_pagination_pages: int = DEFAULT_MAX_PAGINATION_PAGES
    pagination_settle_delay: float = 1.0
    pagination_stable_repeats: int = 2
    min_position_width: int = 50
    logo_max_width: int = DEFAULT_LOGO_MAX_SIDE
    logo_max_height: int = DEFAULT_LOGO_MAX_SIDE
    download_timeout: float = 30.0
    max_attempts: int = 3
    retry_base_delay: float = 2.0
    pipeline_deadline: float = 180.0
    navigation_timeout: float = 30.0
    wait_after_load: float = 1.0
    user_agent: str = DESKTOP_USER_AGENT
