"""
Configuration management for the Canvas dashboard aggregator.

Centralized configuration loading from environment variables with sensible defaults.
The config object is immutable and handed to the client and aggregator explicitly.
"""

import os
from functools import lru_cache
from typing import Dict, List

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator

# Load environment variables from .env file
load_dotenv()


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value else default


def _env_course_ids() -> List[int]:
    raw = os.getenv("CURRENT_TERM_COURSE_IDS", "")
    return [int(part) for part in raw.split(",") if part.strip()]


class CanvasConfig(BaseModel):
    """Configuration for the upstream Canvas API and the aggregation reports."""

    model_config = ConfigDict(frozen=True)

    # Upstream settings
    base_url: str = Field(default_factory=lambda: os.getenv("CANVAS_URL", ""))
    api_key: str = Field(default_factory=lambda: os.getenv("CANVAS_API_KEY", ""))
    port: int = Field(default_factory=lambda: _env_int("PORT", 3000))

    # Pagination settings
    per_page: int = Field(default_factory=lambda: _env_int("CANVAS_PER_PAGE", 50))
    max_pages: int = Field(default_factory=lambda: _env_int("CANVAS_MAX_PAGES", 10))

    # HTTP request settings
    request_timeout_seconds: int = Field(
        default_factory=lambda: _env_int("CANVAS_REQUEST_TIMEOUT", 30)
    )
    max_concurrent_courses: int = Field(
        default_factory=lambda: _env_int("CANVAS_MAX_CONCURRENT_COURSES", 10)
    )

    # Date windows for "current" assignments (in days)
    past_cutoff_days: int = 7
    future_cutoff_days: int = 30
    two_stage_future_cutoff_days: int = 60
    two_stage_per_page: int = 100

    announcements_start_date: str = Field(
        default_factory=lambda: os.getenv("CANVAS_ANNOUNCEMENTS_START_DATE", "2023-01-01")
    )

    # Allow-list for the current-term report
    current_term_course_ids: List[int] = Field(default_factory=_env_course_ids)

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        if not v:
            raise ValueError("CANVAS_URL environment variable is required")
        return v.rstrip("/")

    @field_validator("api_key")
    @classmethod
    def validate_api_key(cls, v: str) -> str:
        if not v:
            raise ValueError("CANVAS_API_KEY environment variable is required")
        return v

    @property
    def headers(self) -> Dict[str, str]:
        """Get HTTP headers for Canvas API requests."""
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }


@lru_cache
def get_config() -> CanvasConfig:
    """Build the process-wide configuration on first use."""
    return CanvasConfig()
