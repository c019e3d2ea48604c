"""Configuration management for the talkative client."""

import os
from typing import Any

import yaml
from dotenv import load_dotenv

DEFAULT_CONFIG_PATH = os.path.join(os.path.dirname(__file__), "config.yaml")

HOST_ENV_VAR = "OLLAMA_HOST"
MODEL_ENV_VAR = "TALKATIVE_DEFAULT_MODEL"


class Configuration:
    """Manages configuration and environment variables for the client."""

    def __init__(self, config_path: str | None = None) -> None:
        """Initialize configuration from YAML and environment variables."""
        self.load_env()
        self.config_path = config_path or DEFAULT_CONFIG_PATH
        self._config = self._load_yaml_config(self.config_path)

    @staticmethod
    def load_env() -> None:
        """Load environment variables from .env file."""
        load_dotenv()

    @staticmethod
    def _load_yaml_config(config_path: str) -> dict[str, Any]:
        """Load configuration from YAML file."""
        with open(config_path) as file:
            config = yaml.safe_load(file)
            if not isinstance(config, dict):
                raise ValueError(
                    f"Config file must be YAML dict, got {type(config)}"
                )
            return config

    def get_config_dict(self) -> dict[str, Any]:
        """Get the full configuration dictionary.

        Returns:
            The complete configuration dictionary.
        """
        return self._config

    def get_ollama_config(self) -> dict[str, Any]:
        """Get server connection settings, with environment overrides applied.

        Returns:
            Dictionary with ``base_url`` and ``default_model``.

        Raises:
            ValueError: If a required parameter is missing or empty.
        """
        ollama_config = self._config.get("ollama", {})

        result = {
            "base_url": os.getenv(HOST_ENV_VAR) or ollama_config.get("base_url"),
            "default_model": (
                os.getenv(MODEL_ENV_VAR) or ollama_config.get("default_model")
            ),
        }

        for key, value in result.items():
            if not value or not isinstance(value, str):
                raise ValueError(
                    f"ollama.{key} must be explicitly configured in config.yaml "
                    "or through the environment"
                )

        return result

    def get_http_client_config(self) -> dict[str, Any]:
        """Get HTTP transport timeouts.

        Returns:
            HTTP client configuration dictionary with validated values.

        Raises:
            ValueError: If required HTTP client parameters are missing or invalid.
        """
        http_config = self._config.get("ollama", {}).get("http_client", {})

        required_keys = [
            "connect_timeout", "read_timeout", "write_timeout", "pool_timeout"
        ]

        for key in required_keys:
            if key not in http_config:
                raise ValueError(
                    f"http_client.{key} must be explicitly configured "
                    "in config.yaml under ollama.http_client (use null to disable)"
                )

            value = http_config[key]
            if value is None:
                continue
            if isinstance(value, bool) or not isinstance(value, int | float):
                raise ValueError(f"http_client.{key} must be a number or null")
            if value <= 0:
                raise ValueError(f"http_client.{key} must be positive")

        return {key: http_config[key] for key in required_keys}

    def get_logging_config(self) -> dict[str, Any]:
        """Get logging configuration from YAML.

        Returns:
            Logging configuration dictionary.
        """
        logging_config = {"level": "INFO"}
        logging_config.update(self._config.get("logging") or {})
        return logging_config
