"""Configuration helpers for the Nano Bananary project."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional


DEFAULT_WATERMARK = "Nano Bananary｜ZHO"


@dataclass(slots=True)
class AppConfig:
    """Centralized application configuration."""

    api_key: Optional[str] = None
    edit_model: str = "gemini-2.5-flash-image"
    image_model: str = "imagen-4.0-generate-001"
    video_model: str = "veo-3.1-fast-generate-preview"
    data_dir: Path = Path("data")
    log_dir: Path = Path("logs")
    log_level: str = "INFO"
    history_path: Path = Path("data/history.sqlite3")
    transformation_order_path: Path = Path("data/transformation_order.json")
    media_dir: Path = Path("data/media")
    watermark_text: str = DEFAULT_WATERMARK
    video_poll_interval: float = 10.0
    video_max_wait: float = 600.0
    metadata: dict[str, Any] = field(default_factory=dict)


def _load_env_file(path: Path) -> None:
    """Populate environment variables from a simple KEY=VALUE .env file."""
    if not path.exists():
        return

    for line in path.read_text(encoding="utf-8").splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#") or "=" not in stripped:
            continue
        key, value = stripped.split("=", 1)
        os.environ[key.strip()] = value.strip().strip('"').strip("'")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw in (None, ""):
        return default
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return default
    return value if value > 0 else default


def load_config(config_path: Optional[str] = None) -> AppConfig:
    """Return an AppConfig instance with environment-aware settings."""
    env_path = Path(config_path) if config_path else Path(".env")
    _load_env_file(env_path)

    data_dir = Path(os.getenv("NANO_DATA_DIR", "data")).expanduser().resolve()
    log_dir = Path(os.getenv("NANO_LOG_DIR", "logs")).expanduser().resolve()

    defaults = AppConfig()
    metadata: dict[str, Any] = {"env_file": str(env_path)}

    return AppConfig(
        api_key=os.getenv("GEMINI_API_KEY") or os.getenv("API_KEY") or None,
        edit_model=os.getenv("GEMINI_EDIT_MODEL") or defaults.edit_model,
        image_model=os.getenv("GEMINI_IMAGE_MODEL") or defaults.image_model,
        video_model=os.getenv("GEMINI_VIDEO_MODEL") or defaults.video_model,
        data_dir=data_dir,
        log_dir=log_dir,
        log_level=os.getenv("NANO_LOG_LEVEL") or defaults.log_level,
        history_path=data_dir / "history.sqlite3",
        transformation_order_path=data_dir / "transformation_order.json",
        media_dir=data_dir / "media",
        watermark_text=os.getenv("WATERMARK_TEXT") or DEFAULT_WATERMARK,
        video_poll_interval=_env_float("VIDEO_POLL_INTERVAL", defaults.video_poll_interval),
        video_max_wait=_env_float("VIDEO_MAX_WAIT", defaults.video_max_wait),
        metadata=metadata,
    )
