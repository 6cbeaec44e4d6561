"""Configuration models for snapwatch."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, field_validator

DEFAULT_CONFIG_FILE = "snapwatch-config.json"


class ViewportConfig(BaseModel):
    width: int = Field(default=1920, gt=0)
    height: int = Field(default=1080, gt=0)


class SnapshotConfig(BaseModel):
    # Storage
    storage_dir: str = "./snapwatch-data"

    # Rendering
    viewport: ViewportConfig = Field(default_factory=ViewportConfig)
    full_page: bool = False
    user_agent: Optional[str] = None
    headless: bool = True
    fail_on_http_error: bool = False

    # Network idle detection
    idle_window_ms: int = Field(default=2000, gt=0)
    max_inflight: int = Field(default=0, ge=0)
    hard_cap_factor: int = Field(default=5, ge=1)

    # Orchestration
    target_timeout_ms: int = Field(default=30000, gt=0)
    max_parallel_contexts: int = Field(default=1, ge=1)

    # Diff
    diff_threshold: float = 0.1
    diff_mask: bool = False  # transparent background instead of the faded capture
    highlight_color: tuple[int, int, int] = (255, 0, 0)
    include_aa: bool = False  # count anti-aliased edge pixels as differences
    aa_color: tuple[int, int, int] = (255, 255, 0)

    @field_validator("diff_threshold")
    @classmethod
    def check_threshold(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError("diff_threshold must be between 0 and 1")
        return v

    @field_validator("highlight_color", "aa_color")
    @classmethod
    def check_color(cls, v: tuple[int, int, int]) -> tuple[int, int, int]:
        if any(c < 0 or c > 255 for c in v):
            raise ValueError("colour channels must be 0-255")
        return v

    @property
    def idle_window_seconds(self) -> float:
        return self.idle_window_ms / 1000

    @property
    def hard_cap_seconds(self) -> float:
        return self.idle_window_seconds * self.hard_cap_factor

    @property
    def target_timeout_seconds(self) -> float:
        return self.target_timeout_ms / 1000

    @property
    def storage_path(self) -> Path:
        return Path(self.storage_dir)

    @classmethod
    def load(cls, path: str | Path) -> "SnapshotConfig":
        """Load config from a JSON file."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        with open(path) as f:
            data = json.load(f)
        return cls(**data)

    def save(self, path: str | Path) -> None:
        """Save config to a JSON file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(self.model_dump(), f, indent=2)
