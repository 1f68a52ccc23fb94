import copy
import logging
import os
import re
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

DEFAULT_USER_AGENT = "ignitia-report v0.1.0"
DEFAULT_TIMEOUT = 30

DEFAULT_CONFIG: Dict[str, Any] = {
    "portal": {
        "base_url": "${IGNITIA_BASE_URL}",
        "username": "${IGNITIA_USERNAME}",
        "password": "${IGNITIA_PASSWORD}",
        "user_agent": DEFAULT_USER_AGENT,
        "timeout": DEFAULT_TIMEOUT,
        "workers": 1,
    },
    "storage": {
        "url": "~/.ignitia/progress.db",
    },
    "logging": {
        "level": "INFO",
        "file": None,
        "requests": False,  # log every portal request/response
        "json": False,  # also log JSON response bodies
    },
}


class Config:
    def __init__(self, config_path: Optional[str] = None):
        logging.debug("Initializing Config class")

        if config_path:
            self.config_file = Path(config_path).expanduser().resolve()
            self.config_dir = self.config_file.parent
        else:
            self.config_dir = Path.home() / ".ignitia"
            self.config_file = self.config_dir / "config.yaml"

        logging.debug(f"Using config file: {self.config_file}")

        # Load environment variables from .env file
        self._load_env_file()

        self._ensure_config_exists()
        self._load_config()

    def _ensure_config_exists(self) -> None:
        """Create default config if it doesn't exist"""
        if not self.config_dir.exists():
            logging.info(f"Creating config directory: {self.config_dir}")
            self.config_dir.mkdir(parents=True)

        if not self.config_file.exists():
            logging.info(f"Creating default config file: {self.config_file}")
            self.config_file.write_text(yaml.safe_dump(DEFAULT_CONFIG, sort_keys=False))

    def _load_env_file(self) -> None:
        """Load environment variables from .env file"""
        env_files = [
            self.config_dir / ".env",
            Path.cwd() / ".env",
        ]

        env_file = None
        for path in env_files:
            if path.exists():
                env_file = path
                break

        if not env_file:
            logging.debug("No .env file found, skipping environment variable loading")
            return

        logging.info(f"Loading environment variables from: {env_file}")
        try:
            with open(env_file, "r") as f:
                for line in f:
                    line = line.strip()
                    if not line or line.startswith("#"):
                        continue

                    match = re.match(r"^([A-Za-z_][A-Za-z0-9_]*)\s*=\s*(.*)$", line)
                    if match:
                        key, value = match.groups()
                        value = value.strip('"').strip("'")
                        # Existing environment wins over .env
                        if key not in os.environ:
                            os.environ[key] = value
                            logging.debug(f"Loaded env var: {key}")
        except OSError as e:
            logging.warning(f"Error loading .env file: {e}")

    def _substitute_env_vars(self, data: Any) -> Any:
        """Recursively substitute ${VAR} and $VAR references with environment values"""
        if isinstance(data, dict):
            return {key: self._substitute_env_vars(value) for key, value in data.items()}
        elif isinstance(data, list):
            return [self._substitute_env_vars(item) for item in data]
        elif isinstance(data, str):
            if data.startswith("${") and data.endswith("}"):
                return os.environ.get(data[2:-1], "")
            elif data.startswith("$") and len(data) > 1:
                return os.environ.get(data[1:], data)
            return data
        return data

    def _merge_defaults(self, data: Dict[str, Any]) -> Dict[str, Any]:
        merged = self._get_default_config()
        for section, values in data.items():
            if isinstance(values, dict) and isinstance(merged.get(section), dict):
                merged[section].update(values)
            else:
                merged[section] = values
        return merged

    def _get_default_config(self) -> Dict[str, Any]:
        return copy.deepcopy(DEFAULT_CONFIG)

    def _load_config(self) -> None:
        """Load configuration from file"""
        try:
            logging.debug(f"Loading config from: {self.config_file}")
            with open(self.config_file) as f:
                new_data = yaml.safe_load(f)

            if not isinstance(new_data, dict):
                raise ValueError("Invalid config format: root must be a dictionary")

            self.data = self._substitute_env_vars(self._merge_defaults(new_data))

            if not isinstance(self.data.get("logging"), dict):
                self.data["logging"] = self._get_default_config()["logging"]

            log_file = self.data["logging"].get("file")
            if log_file:
                self.data["logging"]["file"] = os.path.expanduser(log_file)

        except (OSError, ValueError, yaml.YAMLError) as e:
            logging.error(f"Error loading config: {e}")
            logging.info("Using default configuration")
            self.data = self._substitute_env_vars(self._get_default_config())

    def portal(self) -> Dict[str, Any]:
        """Portal connection settings (base_url, credentials, user agent, timeout, workers)"""
        return self.data.get("portal") or {}

    def storage_url(self) -> str:
        """Persistence connection string; its shape selects the backend"""
        return str((self.data.get("storage") or {}).get("url") or "")

    def logging_settings(self) -> Dict[str, Any]:
        """Log level, optional log file and request logging switches"""
        return self.data.get("logging") or {}
