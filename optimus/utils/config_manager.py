"""
Configuration management for the Optimus client.

This module loads the persisted YAML configuration document
(``submission.yml`` by default), merges it over built-in defaults and fills
the credential and server URL from the environment when the document leaves
them unset. Command-line flags are applied on top by the CLI.
"""

import os
from typing import Any, Dict, Optional

import yaml

from ..exceptions import ConfigurationError
from .logger_config import get_logger

logger = get_logger("config_manager")

DEFAULT_CONFIG_PATH = "submission.yml"
DEFAULT_SERVER_URL = "http://localhost:3000"
DEFAULT_HISTORY_FILE = os.path.join("~", ".optimus", "history.jsonl")

RECOGNIZED_KEYS = {
    "api_key",
    "competition_id",
    "format",
    "server_url",
    "compression_level",
    "exclude",
    "timeout",
    "preferences",
}

# Only consulted when the document leaves the key unset
ENV_FALLBACKS = {
    "OPTIMUS_API_KEY": "api_key",
    "OPTIMUS_SERVER_URL": "server_url",
    "OPTIMUS_COMPETITION_ID": "competition_id",
}


def default_document(api_key: Optional[str] = None, competition_id: Optional[str] = None) -> Dict[str, Any]:
    """Configuration document written by ``optimus init``"""
    return {
        "api_key": api_key or "your-api-key-goes-here",
        "competition_id": competition_id or "default",
        "format": "auto",
        "server_url": DEFAULT_SERVER_URL,
        "compression_level": 6,
        "exclude": [],
        "preferences": {
            "auto_confirm": False,
            "save_history": True,
        },
    }


class ConfigManager:
    """Layered configuration for one client invocation"""

    def __init__(self, config_path: Optional[str] = None, environ: Optional[Dict[str, str]] = None):
        """
        Initialize configuration manager

        Args:
            config_path: Path to configuration file. When given explicitly the
                file must exist; the default path is optional.
            environ: Environment mapping used for fallbacks (defaults to os.environ)
        """
        self.explicit = config_path is not None
        self.config_path = config_path or DEFAULT_CONFIG_PATH
        self.environ = os.environ if environ is None else environ
        self._config: Dict[str, Any] = {}
        self._load_config()

    def _load_config(self) -> None:
        """Load configuration from file and environment variables"""
        self._config = self._get_default_config()

        if os.path.exists(self.config_path):
            self._merge_config(self._read_file(self.config_path))
            logger.info(f"Loaded configuration from {self.config_path}")
        elif self.explicit:
            raise ConfigurationError(f"Configuration file not found: {self.config_path}")
        else:
            logger.debug(f"No configuration file at {self.config_path}, using defaults")

        self._load_env_fallbacks()

    def _get_default_config(self) -> Dict[str, Any]:
        """Get default configuration values"""
        return {
            "api_key": None,
            "competition_id": "default",
            "format": "auto",
            "server_url": None,
            "compression_level": 6,
            "exclude": [],
            "timeout": 30,
            "preferences": {
                "auto_confirm": False,
                "save_history": False,
                "history_file": DEFAULT_HISTORY_FILE,
            },
        }

    def _read_file(self, path: str) -> Dict[str, Any]:
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Malformed configuration file {path}: {e}") from e
        except OSError as e:
            raise ConfigurationError(f"Cannot read configuration file {path}: {e}") from e

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigurationError(f"Configuration file {path} must contain a mapping at the top level")

        unknown = set(data) - RECOGNIZED_KEYS
        if unknown:
            logger.warning(f"Ignoring unknown configuration keys in {path}: {', '.join(sorted(unknown))}")
            data = {k: v for k, v in data.items() if k in RECOGNIZED_KEYS}

        exclude = data.get("exclude")
        if exclude is not None and (
            not isinstance(exclude, list) or not all(isinstance(p, str) for p in exclude)
        ):
            raise ConfigurationError("'exclude' must be a list of path patterns")

        timeout = data.get("timeout")
        if timeout is not None and (
            isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0
        ):
            raise ConfigurationError(f"'timeout' must be a positive number of seconds, got {timeout!r}")
        return data

    def _merge_config(self, new_config: Dict[str, Any]) -> None:
        """Merge new configuration into existing config"""
        def merge_dict(target: Dict[str, Any], source: Dict[str, Any]) -> None:
            for key, value in source.items():
                if key in target and isinstance(target[key], dict) and isinstance(value, dict):
                    merge_dict(target[key], value)
                else:
                    target[key] = value

        merge_dict(self._config, new_config)

    def _load_env_fallbacks(self) -> None:
        for env_var, key in ENV_FALLBACKS.items():
            value = self.environ.get(env_var)
            if value and not self._config.get(key):
                self._config[key] = value
                logger.debug(f"Using {env_var} for '{key}'")

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value using dot notation

        Args:
            key: Configuration key (e.g., "preferences.auto_confirm")
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        current: Any = self._config
        for k in key.split('.'):
            if isinstance(current, dict) and k in current:
                current = current[k]
            else:
                return default
        return current

    def set(self, key: str, value: Any) -> None:
        """
        Set configuration value using dot notation

        Args:
            key: Configuration key (e.g., "server_url")
            value: Value to set
        """
        keys = key.split('.')
        current = self._config
        for k in keys[:-1]:
            if not isinstance(current.get(k), dict):
                current[k] = {}
            current = current[k]
        current[keys[-1]] = value

    def override(self, key: str, value: Any) -> None:
        """Set a value only when the caller actually supplied one"""
        if value is not None:
            self.set(key, value)

    def save(self, path: Optional[str] = None) -> None:
        """
        Save the current configuration to a YAML file

        Args:
            path: File path (uses the loaded config path if None)
        """
        save_path = path or self.config_path
        directory = os.path.dirname(save_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        try:
            with open(save_path, "w", encoding="utf-8") as f:
                yaml.safe_dump(self._config, f, default_flow_style=False, sort_keys=False)
        except OSError as e:
            raise ConfigurationError(f"Cannot write configuration file {save_path}: {e}") from e
        logger.info(f"Configuration saved to {save_path}")


def write_default_config(
    path: str = DEFAULT_CONFIG_PATH,
    api_key: Optional[str] = None,
    competition_id: Optional[str] = None,
    force: bool = False,
) -> Dict[str, Any]:
    """
    Write the default configuration document

    Args:
        path: Destination path
        api_key: Credential to store in the document
        competition_id: Competition to store in the document
        force: Overwrite an existing file

    Returns:
        The document that was written
    """
    if os.path.exists(path) and not force:
        raise ConfigurationError(f"{path} already exists (use --force to overwrite)")

    document = default_document(api_key, competition_id)
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    try:
        with open(path, "w", encoding="utf-8") as f:
            yaml.safe_dump(document, f, default_flow_style=False, sort_keys=False)
    except OSError as e:
        raise ConfigurationError(f"Cannot write configuration file {path}: {e}") from e

    logger.info(f"Configuration saved to {path}")
    return document
