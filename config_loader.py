#!/usr/bin/env python3
"""
Configuration loader for the SCB statistics MCP server.
"""

import json
import logging
import os
from pathlib import Path
from typing import Dict, Any, List, Optional

logger = logging.getLogger(__name__)


class Config:
    """Configuration manager for the SCB statistics server."""

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize configuration from JSON file.

        Args:
            config_path: Path to config file. Falls back to $SCB_CONFIG_PATH,
                then to config.json next to this module.
        """
        if config_path is None:
            config_path = os.getenv("SCB_CONFIG_PATH")
        if config_path is None:
            self.config_path = Path(__file__).parent / "config.json"
        else:
            self.config_path = Path(config_path)
        self._config = self._load_config()

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from JSON file."""
        try:
            with open(self.config_path, "r", encoding="utf-8") as f:
                return json.load(f)
        except FileNotFoundError:
            raise FileNotFoundError(f"Config file not found at {self.config_path}. Please ensure config.json exists.")
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in config file: {e}. Please fix the config.json file.")

    def get(self, section: str, key: str, default: Any = None) -> Any:
        """
        Get a configuration value.

        Args:
            section: Configuration section (e.g., 'scb_api')
            key: Configuration key (e.g., 'request_timeout')
            default: Default value if key not found

        Returns:
            Configuration value

        Raises:
            KeyError: If section or key not found and no default provided
        """
        if section not in self._config:
            if default is not None:
                return default
            raise KeyError(f"Configuration section '{section}' not found")

        if key not in self._config[section]:
            if default is not None:
                return default
            raise KeyError(f"Configuration key '{key}' not found in section '{section}'")

        return self._config[section][key]

    # Convenience properties for commonly used values
    @property
    def base_url(self) -> str:
        """SCB API base URL, overridable through $SCB_API_BASE_URL."""
        return os.getenv("SCB_API_BASE_URL") or self.get("scb_api", "base_url")

    @property
    def request_timeout(self) -> float:
        """Timeout in seconds for a single upstream request."""
        return float(self.get("scb_api", "request_timeout"))

    @property
    def max_url_length(self) -> int:
        """Encoded URL length above which data requests are sent as POST."""
        return self.get("scb_api", "max_url_length")

    @property
    def default_language(self) -> str:
        return self.get("scb_api", "default_language")

    @property
    def supported_languages(self) -> List[str]:
        return self.get("scb_api", "supported_languages")

    @property
    def default_page_size(self) -> int:
        return self.get("scb_api", "default_page_size")

    @property
    def max_page_size(self) -> int:
        return self.get("scb_api", "max_page_size")

    @property
    def region_table_id(self) -> str:
        """Table whose region dimension backs the region lookup tools."""
        return self.get("scb_api", "region_table_id")

    @property
    def default_max_calls(self) -> int:
        """Calls per window used when the API config cannot be fetched."""
        return self.get("rate_limit", "default_max_calls")

    @property
    def default_time_window(self) -> int:
        """Window length in seconds used when the API config cannot be fetched."""
        return self.get("rate_limit", "default_time_window")

    @property
    def preview_rows(self) -> int:
        return self.get("data", "preview_rows")

    @property
    def suggestion_sample_size(self) -> int:
        """Number of valid sample values offered for an invalid category."""
        return self.get("data", "suggestion_sample_size")

    @property
    def variable_sample_size(self) -> int:
        return self.get("data", "variable_sample_size")

    @property
    def region_match_limit(self) -> int:
        return self.get("data", "region_match_limit")

    @property
    def server_name(self) -> str:
        """MCP server name."""
        return self.get("mcp_server", "server_name")

    @property
    def server_version(self) -> str:
        return self.get("mcp_server", "server_version")

    @property
    def protocol_version(self) -> str:
        return self.get("mcp_server", "protocol_version")

    @property
    def http_port(self) -> int:
        return int(os.getenv("PORT") or self.get("http_server", "port"))

    @property
    def cors_origins(self) -> List[str]:
        return self.get("http_server", "cors_origins")


# Global config instance
_config_instance = None


def get_config(config_path: Optional[str] = None) -> Config:
    """Get the global configuration instance."""
    global _config_instance
    if _config_instance is None:
        _config_instance = Config(config_path)
        logger.debug("Loaded configuration from %s", _config_instance.config_path)
    return _config_instance

