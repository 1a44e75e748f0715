"""Provides functions for loading and accessing configuration settings.

Supports loading from .env files, environment variables, and a dedicated
configuration file (~/.skyfi_mcp/config.yaml).
"""

import logging
import os
from pathlib import Path
from typing import Any, Optional, Dict, Tuple

import yaml
from dotenv import load_dotenv

from skyfi_mcp.domain.models.common import SkyFiClientConfig

logger = logging.getLogger(__name__)

# --- Configuration Constants ---
DEFAULT_CONFIG_DIR = Path.home() / ".skyfi_mcp"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.yaml"
ENV_FILE_NAME = ".env"

DEFAULT_BASE_URL = "https://app.skyfi.com/platform-api"
DEFAULT_TIMEOUT_MS = 30000
DEFAULT_RETRIES = 3
DEFAULT_RATE_LIMIT_CAPACITY = 100
DEFAULT_RATE_LIMIT_REFILL_PER_SECOND = 10.0

# --- Global Configuration Store (Simple Approach) ---
_config: Dict[str, Any] = {}
_test_config: Dict[str, Any] = {}
_loaded = False

def load_configuration(config_file: Path = DEFAULT_CONFIG_FILE, env_file: Optional[Path] = None) -> None:
    """Loads configuration from environment, .env file, and YAML file.

    Priority order (highest to lowest):
    1. Environment Variables
    2. .env file
    3. YAML configuration file
    4. Default values passed to get_config

    Args:
        config_file: Path to the YAML configuration file.
        env_file: Path to the .env file (searches upwards from cwd if None).
    """
    global _config, _loaded
    if _loaded:
        logger.debug("Configuration already loaded.")
        return

    _config = {}

    # 1. Load from YAML file (Lowest priority)
    if config_file.exists():
        try:
            with open(config_file, 'r') as f:
                yaml_config = yaml.safe_load(f)
            if isinstance(yaml_config, dict):
                _config.update(yaml_config)
                logger.info(f"Loaded configuration from YAML: {config_file}")
            elif yaml_config is not None:
                logger.warning(f"YAML config file {config_file} did not contain a dictionary.")
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Failed to load or parse YAML config {config_file}: {e}")
    else:
        logger.debug(f"YAML config file not found: {config_file}")

    # 2. Load from .env file (Medium priority)
    dotenv_path = env_file or find_dotenv_path()
    if dotenv_path:
        # override=False: real environment variables take precedence
        if load_dotenv(dotenv_path=dotenv_path, override=False):
            logger.info(f"Loaded environment variables from: {dotenv_path}")
    else:
        logger.debug("Skipping .env file loading (no file found).")

    # 3. Environment Variables (Highest priority) are handled in get_config

    _loaded = True
    logger.info("Configuration loading process completed.")

def reset_configuration() -> None:
    """Forgets loaded YAML values so the next load_configuration re-reads them."""
    global _config, _loaded
    _config = {}
    _loaded = False

def _coerce(value: str) -> Any:
    """Converts common scalar spellings coming from environment variables."""
    if value.lower() == 'true':
        return True
    if value.lower() == 'false':
        return False
    try:
        if '.' in value:
            return float(value)
        return int(value)
    except (ValueError, TypeError):
        return value

def _lookup_yaml(key: str) -> Any:
    """Resolves flat keys first, then dotted keys through nested mappings."""
    if key in _config:
        return _config[key]
    node: Any = _config
    for part in key.split('.'):
        if not isinstance(node, dict) or part not in node:
            return None
        node = node[part]
    return node

def get_config(key: str, default: Any = None) -> Any:
    """
    Get a configuration value by key.

    Priority:
    1. Test configuration (if in testing mode)
    2. Environment variable (upper case, dots replaced by underscores)
    3. YAML config (flat or dotted key)
    4. Default value

    Args:
        key: The configuration key, e.g. 'SKYFI_API_KEY' or 'skyfi.retries'
        default: Default value if the key is not found

    Returns:
        The configuration value
    """
    if key in _test_config:
        return _test_config[key]

    env_key = key.upper().replace('.', '_')
    if env_key in os.environ:
        return _coerce(os.environ[env_key])

    value = _lookup_yaml(key)
    if value is not None:
        return value

    logger.debug(f"Config key '{key}' not found in environment or loaded config. Returning default: {default}")
    return default

def find_dotenv_path() -> Optional[Path]:
    """Searches for the .env file upwards from the current directory."""
    try:
        cwd = Path.cwd()
        for path in [cwd] + list(cwd.parents):
            env_path = path / ENV_FILE_NAME
            if env_path.is_file():
                return env_path
    except OSError as e:
        logger.warning(f"Error searching for .env file: {e}")
    return None

def set_config(key: str, value: Any) -> None:
    """Sets a configuration value for the running process.

    Args:
        key: Configuration key (e.g., 'logging.level')
        value: Value to set
    """
    logger.debug(f"Setting config: {key} = {value}")
    _config[key] = value

# --- Convenience Functions ---

def get_skyfi_api_key() -> Optional[str]:
    """Convenience function to get the SkyFi API key."""
    # Checks ENV SKYFI_API_KEY first, then yaml skyfi.api_key
    key = get_config('SKYFI_API_KEY') or get_config('skyfi.api_key')
    return str(key) if key is not None else None

def get_skyfi_base_url() -> str:
    """Base URL of the SkyFi platform API, without a trailing slash."""
    url = get_config('SKYFI_BASE_URL') or get_config('skyfi.base_url', DEFAULT_BASE_URL)
    return str(url).rstrip('/')

def get_client_config() -> SkyFiClientConfig:
    """Assembles the client constructor configuration from all sources."""
    api_key = get_skyfi_api_key()
    if not api_key:
        raise ValueError("SkyFi API key not configured. Set SKYFI_API_KEY or skyfi.api_key.")
    return SkyFiClientConfig(
        api_key=api_key,
        base_url=get_skyfi_base_url(),
        timeout_ms=int(get_config('skyfi.timeout_ms', DEFAULT_TIMEOUT_MS)),
        retries=int(get_config('skyfi.retries', DEFAULT_RETRIES)),
    )

def get_rate_limit_settings() -> Tuple[int, float]:
    """Returns (capacity, refill tokens per second) for the client rate limiter."""
    capacity = int(get_config('skyfi.rate_limit.capacity', DEFAULT_RATE_LIMIT_CAPACITY))
    refill = float(get_config('skyfi.rate_limit.refill_per_second', DEFAULT_RATE_LIMIT_REFILL_PER_SECOND))
    return capacity, refill

def set_config_for_testing(config_dict: Dict[str, Any]) -> None:
    """
    Set configuration values for testing purposes.
    These values will override any existing configuration.

    Args:
        config_dict: Dictionary of configuration values to set
    """
    _test_config.update(config_dict)
    logger.debug(f"Set testing configuration: {sorted(config_dict)}")

def clear_test_config() -> None:
    """Clear all testing configuration values."""
    _test_config.clear()
    logger.debug("Cleared testing configuration")
