"""
Configuration management for CloudGallery.
Handles loading, validation, and defaults for all settings.
"""

import os
import yaml
from typing import Any, Dict, List, Optional
from dataclasses import dataclass, field
import logging

logger = logging.getLogger(__name__)

# Default paths
DEFAULT_CONFIG_PATHS = [
    "/etc/cloudgallery/config.yaml",
    os.path.expanduser("~/.config/cloudgallery/config.yaml"),
    "./config.yaml",
]


@dataclass
class NextcloudConfig:
    """Remote Nextcloud server settings."""
    url: str = ""
    username: str = ""
    password: str = ""  # App password, not the account password
    photo_dir: str = "Photos"
    timeout_seconds: int = 60
    verify_ssl: bool = False


@dataclass
class CacheConfig:
    """Metadata cache settings."""
    directory: str = "/var/lib/cloudgallery/cache"
    batch_size: int = 5
    image_max_mb: int = 50
    video_max_mb: int = 500
    image_cache_hours: int = 24  # Lifetime of proxied image files
    prune_days: int = 7


@dataclass
class WebConfig:
    """Web interface settings."""
    enabled: bool = True
    port: int = 8080
    host: str = "0.0.0.0"


@dataclass
class GalleryConfig:
    """Main configuration class."""
    nextcloud: NextcloudConfig = field(default_factory=NextcloudConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    web: WebConfig = field(default_factory=WebConfig)

    # Runtime state (not persisted)
    config_path: Optional[str] = None


def _dict_to_dataclass(data: Dict[str, Any], cls: type) -> Any:
    """Convert a dictionary to a dataclass instance, handling nested dataclasses."""
    if data is None:
        return cls()

    field_types = {f.name: f.type for f in cls.__dataclass_fields__.values()}
    kwargs = {}

    for key, value in data.items():
        if key not in field_types:
            continue

        field_type = field_types[key]

        if hasattr(field_type, '__dataclass_fields__'):
            kwargs[key] = _dict_to_dataclass(value, field_type)
        else:
            kwargs[key] = value

    return cls(**kwargs)


def load_config(config_path: Optional[str] = None) -> GalleryConfig:
    """
    Load configuration from a YAML file.

    Args:
        config_path: Path to config file. If None, searches default locations.

    Returns:
        GalleryConfig instance with loaded or default values.
    """
    if config_path:
        paths_to_try = [config_path]
    else:
        paths_to_try = DEFAULT_CONFIG_PATHS

    config_data = {}
    found_path = None

    for path in paths_to_try:
        expanded_path = os.path.expanduser(path)
        if os.path.exists(expanded_path):
            try:
                with open(expanded_path, 'r') as f:
                    config_data = yaml.safe_load(f) or {}
                found_path = expanded_path
                logger.info(f"Loaded config from {expanded_path}")
                break
            except Exception as e:
                logger.warning(f"Failed to load config from {expanded_path}: {e}")

    if not found_path:
        logger.info("No config file found, using defaults")

    config = GalleryConfig(
        nextcloud=_dict_to_dataclass(config_data.get('nextcloud'), NextcloudConfig),
        cache=_dict_to_dataclass(config_data.get('cache'), CacheConfig),
        web=_dict_to_dataclass(config_data.get('web'), WebConfig),
        config_path=found_path,
    )

    # Expand cache directory path
    config.cache.directory = os.path.expanduser(config.cache.directory)

    return config


def validate_config(config: GalleryConfig) -> List[str]:
    """
    Validate configuration and return list of errors.

    Returns:
        List of error messages. Empty if valid.
    """
    errors = []

    # Check remote server
    url = config.nextcloud.url
    if not url:
        errors.append("No Nextcloud URL configured.")
    elif not (url.startswith('http://') or url.startswith('https://')):
        errors.append("Nextcloud URL must start with http:// or https://")

    if not config.nextcloud.username:
        errors.append("No Nextcloud username configured.")

    if config.nextcloud.timeout_seconds <= 0:
        errors.append("timeout_seconds must be positive")

    # Check cache settings
    if config.cache.batch_size < 1:
        errors.append("Cache batch_size must be at least 1")

    if config.cache.image_max_mb < 1 or config.cache.video_max_mb < 1:
        errors.append("Cache size limits must be at least 1 MB")

    if config.cache.image_cache_hours < 0 or config.cache.prune_days < 0:
        errors.append("Cache lifetimes cannot be negative")

    # Check web settings
    if config.web.port < 1 or config.web.port > 65535:
        errors.append("Web port must be between 1 and 65535")

    return errors
