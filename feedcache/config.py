"""
Configuration management for feed cache stores.

The configuration is stored as a TOML file in the store directory. It holds
the eviction window and the facsimile rendering parameters.
"""

import os
import tomllib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

import tomli_w


CONFIG_FILENAME = "feedcache.toml"
CONFIG_VERSION = 1

DEFAULT_KEEP_ISSUES = 20
DEFAULT_FACSIMILE_SCALE = 2.0
DEFAULT_FACSIMILE_QUALITY = 85


@dataclass
class CacheConfig:
    """Complete store configuration."""
    path: Path
    version: int = CONFIG_VERSION
    created: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    # Complete issues kept per feed by reduce_oldest
    keep_issues: int = DEFAULT_KEEP_ISSUES

    # Page facsimile rendering
    facsimile_scale: float = DEFAULT_FACSIMILE_SCALE
    facsimile_quality: int = DEFAULT_FACSIMILE_QUALITY

    @property
    def config_path(self) -> Path:
        """Path to the TOML config file."""
        return self.path / CONFIG_FILENAME

    def exists(self) -> bool:
        return self.config_path.exists()


def default_store_path() -> Path:
    """Store directory from FEEDCACHE_STORE_PATH, else ~/.feedcache."""
    env = os.environ.get("FEEDCACHE_STORE_PATH")
    if env:
        return Path(env).expanduser()
    return Path.home() / ".feedcache"


def load_config(store_path: Path) -> CacheConfig:
    """
    Load configuration from a store directory.

    Raises:
        FileNotFoundError: If config doesn't exist
        ValueError: If config is invalid
    """
    config_path = store_path / CONFIG_FILENAME

    if not config_path.exists():
        raise FileNotFoundError(f"Config not found: {config_path}")

    with open(config_path, "rb") as f:
        data = tomllib.load(f)

    store = data.get("store", {})
    version = store.get("version", 1)
    if version > CONFIG_VERSION:
        raise ValueError(f"Config version {version} is newer than supported ({CONFIG_VERSION})")

    eviction = data.get("eviction", {})
    facsimile = data.get("facsimile", {})
    keep_issues = int(eviction.get("keep_issues", DEFAULT_KEEP_ISSUES))
    if keep_issues < 0:
        raise ValueError(f"eviction.keep_issues must not be negative: {keep_issues}")

    return CacheConfig(
        path=store_path,
        version=version,
        created=store.get("created", ""),
        keep_issues=keep_issues,
        facsimile_scale=float(facsimile.get("scale", DEFAULT_FACSIMILE_SCALE)),
        facsimile_quality=int(facsimile.get("quality", DEFAULT_FACSIMILE_QUALITY)),
    )


def save_config(config: CacheConfig) -> None:
    """
    Save configuration to the store directory.

    Creates the directory if it doesn't exist.
    """
    config.path.mkdir(parents=True, exist_ok=True)

    data = {
        "store": {
            "version": config.version,
            "created": config.created,
        },
        "eviction": {
            "keep_issues": config.keep_issues,
        },
        "facsimile": {
            "scale": config.facsimile_scale,
            "quality": config.facsimile_quality,
        },
    }

    with open(config.config_path, "wb") as f:
        tomli_w.dump(data, f)


def load_or_create_config(store_path: Path) -> CacheConfig:
    """
    Load existing config or create a new one with defaults.

    This is the main entry point for config management.
    """
    if (store_path / CONFIG_FILENAME).exists():
        return load_config(store_path)
    config = CacheConfig(path=store_path)
    save_config(config)
    return config
