#!/usr/bin/env python3
"""
Proxmox Secrets Management
Purpose: Load Proxmox API connection settings from environment and env files
"""

import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple

try:
    import yaml
except ImportError:
    print("ERROR: pyyaml module not found. Install with: uv sync")
    sys.exit(1)

try:
    from dotenv import dotenv_values
except ImportError:
    print("ERROR: python-dotenv module not found. Install with: uv sync")
    sys.exit(1)


REQUIRED_KEYS = (
    "PROXMOX_HOST",
    "PROXMOX_NODE",
    "PROXMOX_TOKEN_ID",
    "PROXMOX_TOKEN_SECRET",
)
OPTIONAL_KEYS = ("PROXMOX_VERIFY_SSL", "PROXMOX_TIMEOUT")
SECRET_KEYS = ("PROXMOX_TOKEN_SECRET",)

DEFAULT_TIMEOUT = 30


class ConfigError(Exception):
    """Raised when the Proxmox configuration cannot be loaded or is incomplete"""


@dataclass(frozen=True)
class ProxmoxConfig:
    """Connection settings for one Proxmox VE node"""

    host: str
    node: str
    token_id: str
    token_secret: str
    verify_ssl: bool = False
    timeout: float = DEFAULT_TIMEOUT


def _as_bool(value: Optional[str]) -> bool:
    return str(value or "").strip().lower() in ("1", "true", "yes", "on")


class SecretsManager:
    """Merge config values from several sources with priority order"""

    def __init__(self, default_env_file: Path, env_file: Optional[Path] = None):
        self.default_env_file = default_env_file
        self.env_file = env_file
        self._sources: Dict[str, str] = {}

    def _read_file(self, path: Path) -> Dict[str, str]:
        """Read a dotenv file, or a flat YAML mapping for .yaml/.yml files"""
        try:
            if path.suffix in (".yaml", ".yml"):
                with open(path, "r", encoding="utf-8") as f:
                    data = yaml.safe_load(f) or {}
                if not isinstance(data, dict):
                    raise ConfigError(f"Config file must contain a mapping: {path}")
                return {str(k): "" if v is None else str(v) for k, v in data.items()}
            return {k: v or "" for k, v in dotenv_values(path).items()}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Failed to load config file {path}: {e}") from e

    def load_values(self) -> Dict[str, str]:
        """
        Resolve config values, later sources overriding earlier ones:
        1. Process environment
        2. Default env file (only if it exists)
        3. User env file (must exist when given)

        Returns:
            Mapping of known keys to their resolved values
        """
        known = REQUIRED_KEYS + OPTIONAL_KEYS
        values: Dict[str, str] = {}
        self._sources = {}

        for key in known:
            if os.environ.get(key):
                values[key] = os.environ[key]
                self._sources[key] = "environment"

        layers: List[Tuple[Path, Dict[str, str]]] = []
        if self.default_env_file.is_file():
            layers.append((self.default_env_file, self._read_file(self.default_env_file)))

        if self.env_file is not None:
            if not self.env_file.is_file():
                raise ConfigError(f"Environment file '{self.env_file}' not found.")
            layers.append((self.env_file, self._read_file(self.env_file)))

        for path, file_values in layers:
            for key in known:
                # An empty assignment clears the value, as sourcing the file would
                if key in file_values:
                    values[key] = file_values[key]
                    self._sources[key] = str(path)

        return values

    def source_of(self, key: str) -> Optional[str]:
        """Where the value of key came from during the last load_values() call"""
        return self._sources.get(key)

    def load_config(self) -> ProxmoxConfig:
        """Load and validate the Proxmox connection settings"""
        values = self.load_values()

        missing = [key for key in REQUIRED_KEYS if not values.get(key)]
        if missing:
            raise ConfigError("Missing " + ", ".join(missing))

        timeout_raw = values.get("PROXMOX_TIMEOUT")
        try:
            timeout = float(timeout_raw) if timeout_raw else DEFAULT_TIMEOUT
        except ValueError as e:
            raise ConfigError(f"PROXMOX_TIMEOUT must be a number, got '{timeout_raw}'") from e

        return ProxmoxConfig(
            host=values["PROXMOX_HOST"].rstrip("/"),
            node=values["PROXMOX_NODE"],
            token_id=values["PROXMOX_TOKEN_ID"],
            token_secret=values["PROXMOX_TOKEN_SECRET"],
            verify_ssl=_as_bool(values.get("PROXMOX_VERIFY_SSL")),
            timeout=timeout,
        )

    def get_secrets_info(self) -> str:
        """Get information about config sources"""
        values = self.load_values()

        lines = []
        lines.append("Config Priority Order:")
        lines.append("  1. User env file (-e)")
        lines.append(f"  2. Default env file ({self.default_env_file})")
        lines.append("  3. Environment variables (PROXMOX_*)")
        lines.append("")

        if self.default_env_file.is_file():
            lines.append(f"✓ Default env file found: {self.default_env_file}")
        else:
            lines.append(f"⚠ Default env file not found: {self.default_env_file}")
            lines.append(f"  Create from: {self.default_env_file}.example")

        lines.append("")
        lines.append("Settings:")
        for key in REQUIRED_KEYS + OPTIONAL_KEYS:
            value = values.get(key)
            if value:
                shown = "********" if key in SECRET_KEYS else value
                lines.append(f"  ✓ {key} = {shown} ({self.source_of(key)})")
            elif key in REQUIRED_KEYS:
                lines.append(f"  ✗ {key} not set (required)")
            else:
                lines.append(f"    {key} not set")

        return "\n".join(lines)


def load_config_with_secrets(default_env_file: Path, env_file: Optional[Path] = None) -> ProxmoxConfig:
    """
    Load the Proxmox config or exit

    Prints a diagnostic naming the problem and exits with status 1 when the
    user env file is missing or a required key is absent.
    """
    try:
        return SecretsManager(default_env_file, env_file).load_config()
    except ConfigError as e:
        print(f"ERROR: {e}")
        sys.exit(1)
