"""
config.py - Configuration model for shopmirror
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator
from rich.console import Console

try:
    import tomllib
except ModuleNotFoundError:
    import tomli as tomllib

console = Console()

DEFAULT_STATIC_ENDPOINTS: tuple[str, ...] = (
    "news",
    "telops",
    "genres",
    "publishers",
    "platforms",
    "languages",
)


class ServiceConfig(BaseModel):
    """Remote catalog services and their shared query parameters."""

    samurai_url: str = "https://samurai.ctr.shop.nintendo.net/samurai/ws"
    ninja_url: str = "https://ninja.ctr.shop.nintendo.net/ninja/ws"
    shop_id: int = Field(default=1, description="Catalog identifier (1 = 3DS, 2 = Wii U)")
    cert: Optional[Path] = Field(
        default=None,
        description="PEM client certificate required by the pricing/id-mapping service",
    )
    omit_ninja: bool = Field(
        default=False,
        description="Skip pricing/id-mapping documents (required when no certificate is configured)",
    )


class FetchConfig(BaseModel):
    """Retry and pacing policy for outbound requests."""

    retry_delay_seconds: float = 10.0
    document_max_attempts: Optional[int] = Field(
        default=None,
        description="Attempts per listing/detail request; None retries until success",
    )
    resource_max_attempts: int = Field(
        default=6,
        description="Attempts per media resource before it is reported as failed",
    )
    min_interval_seconds: float = Field(
        default=1.0,
        description="Politeness delay enforced between requests to the same host",
    )
    timeout_seconds: float = 60.0

    @field_validator("document_max_attempts", "resource_max_attempts")
    @classmethod
    def _positive_attempts(cls, value: Optional[int]) -> Optional[int]:
        if value is not None and value < 1:
            raise ValueError("attempt budgets must be at least 1")
        return value


class MirrorConfig(BaseModel):
    regions: List[str] = Field(default_factory=lambda: ["US"])
    languages: List[str] = Field(default_factory=lambda: ["en"])
    endpoints: List[str] = Field(default_factory=lambda: list(DEFAULT_STATIC_ENDPOINTS))
    output_dir: Path = Path("mirror")
    fetch_videos: bool = False
    refresh: bool = Field(
        default=False,
        description="Re-fetch detail documents even when a stored copy exists",
    )
    ffmpeg: str = "ffmpeg"
    services: ServiceConfig = Field(default_factory=ServiceConfig)
    fetch: FetchConfig = Field(default_factory=FetchConfig)
    config_path: Optional[Path] = None

    @field_validator("regions")
    @classmethod
    def _upper_regions(cls, value: List[str]) -> List[str]:
        return [region.strip().upper() for region in value if region.strip()]

    @field_validator("languages")
    @classmethod
    def _lower_languages(cls, value: List[str]) -> List[str]:
        return [language.strip().lower() for language in value if language.strip()]

    @field_validator("endpoints")
    @classmethod
    def _known_endpoints(cls, value: List[str]) -> List[str]:
        unknown = [name for name in value if name not in DEFAULT_STATIC_ENDPOINTS]
        if unknown:
            supported = ", ".join(DEFAULT_STATIC_ENDPOINTS)
            raise ValueError(f"Unsupported endpoint(s) {', '.join(unknown)}. Supported: {supported}")
        return value


def load_config(config_path: Optional[Path]) -> MirrorConfig:
    """Load configuration from TOML file; defaults apply when no file is given"""

    if config_path is None:
        return MirrorConfig()

    if not config_path.exists():
        console.print(f"[red][ERROR][/red] Configuration file not found: {config_path}")
        sys.exit(1)

    try:
        with open(config_path, "rb") as f:
            config_data = tomllib.load(f)

        mirror_data = dict(config_data.get("mirror", {}))
        return MirrorConfig(
            **mirror_data,
            services=ServiceConfig(**config_data.get("services", {})),
            fetch=FetchConfig(**config_data.get("fetch", {})),
            config_path=config_path,
        )

    except Exception as e:
        console.print(f"[red][ERROR][/red] Error loading configuration: {e}")
        sys.exit(1)
