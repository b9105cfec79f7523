"""
Configuration management for serpentnote data directories.

The configuration is stored as a TOML file in the data directory.
It selects the storage backend and tunes the persistence, search and
image-ingest parameters.
"""

import os
import tomllib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import tomli_w


CONFIG_FILENAME = "serpentnote.toml"
CONFIG_VERSION = 1

DEFAULT_DATA_DIR = "serpentnote-data"
MIB = 1024 * 1024

BACKEND_CHOICES = ("auto", "files", "sqlite", "flat")


@dataclass
class AppConfig:
    """Complete data-directory configuration."""
    path: Path
    version: int = CONFIG_VERSION
    created: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    # Storage
    backend: str = "auto"
    flat_quota_bytes: int = 10 * MIB
    quota_warn_percent: float = 80.0
    quota_block_percent: float = 95.0

    # Persistence and input scheduling
    save_interval_ms: int = 1000
    search_debounce_ms: int = 150
    undo_capacity: int = 10

    # Tag search
    use_worker: bool = True
    search_limit: int = 10

    # Images
    max_image_width: int = 1024
    image_quality: int = 80
    gallery_initial: int = 50
    gallery_batch: int = 20

    # Channel list
    channels_per_page: int = 20

    @property
    def config_path(self) -> Path:
        """Path to the TOML config file."""
        return self.path / CONFIG_FILENAME

    def exists(self) -> bool:
        """Check if config file exists."""
        return self.config_path.exists()


# Keys persisted under [storage], [timing], [search], [images] and [channels]
_SECTIONS = {
    "storage": ("backend", "flat_quota_bytes", "quota_warn_percent", "quota_block_percent"),
    "timing": ("save_interval_ms", "search_debounce_ms", "undo_capacity"),
    "search": ("use_worker", "search_limit"),
    "images": ("max_image_width", "image_quality", "gallery_initial", "gallery_batch"),
    "channels": ("channels_per_page",),
}


def get_data_dir(explicit: Optional[Path] = None) -> Path:
    """
    Resolve the data directory.

    Priority:
    1. Explicit path argument
    2. SERPENTNOTE_DATA_PATH environment variable
    3. ./serpentnote-data in the working directory
    """
    if explicit is not None:
        return Path(explicit).expanduser().resolve()
    env = os.environ.get("SERPENTNOTE_DATA_PATH")
    if env:
        return Path(env).expanduser().resolve()
    return (Path.cwd() / DEFAULT_DATA_DIR).resolve()


def load_config(data_path: Path) -> AppConfig:
    """
    Load configuration from a data directory.

    Raises:
        FileNotFoundError: If config doesn't exist
        ValueError: If config is invalid
    """
    config_path = data_path / CONFIG_FILENAME

    if not config_path.exists():
        raise FileNotFoundError(f"Config not found: {config_path}")

    with open(config_path, "rb") as f:
        data = tomllib.load(f)

    # Validate version
    version = data.get("app", {}).get("version", 1)
    if version > CONFIG_VERSION:
        raise ValueError(f"Config version {version} is newer than supported ({CONFIG_VERSION})")

    defaults = AppConfig(path=data_path)
    values = {}
    for section, keys in _SECTIONS.items():
        for key in keys:
            if key in data.get(section, {}):
                values[key] = data[section][key]

    for key, value in values.items():
        expected = type(getattr(defaults, key))
        if expected is float and isinstance(value, int):
            values[key] = float(value)
        elif not isinstance(value, expected):
            raise ValueError(f"Config key {key!r} must be {expected.__name__}, got {value!r}")

    # backend names outside BACKEND_CHOICES are entry points, resolved at startup
    return AppConfig(
        path=data_path,
        version=version,
        created=data.get("app", {}).get("created", ""),
        **values,
    )


def save_config(config: AppConfig) -> None:
    """
    Save configuration to the data directory.

    Creates the directory if it doesn't exist.
    """
    config.path.mkdir(parents=True, exist_ok=True)

    data: dict = {
        "app": {
            "version": config.version,
            "created": config.created,
        },
    }
    for section, keys in _SECTIONS.items():
        data[section] = {key: getattr(config, key) for key in keys}

    with open(config.config_path, "wb") as f:
        tomli_w.dump(data, f)


def load_or_create_config(data_path: Path) -> AppConfig:
    """
    Load existing config or create a new one with defaults.

    This is the main entry point for config management.
    """
    config_path = data_path / CONFIG_FILENAME

    if config_path.exists():
        return load_config(data_path)
    else:
        config = AppConfig(path=data_path)
        save_config(config)
        return config
