"""
Configuration Management Module

Loads config.yaml from the project root once and hands out its sections as
plain dicts. Every component falls back to built-in defaults, so a missing
section or key is never an error.

Usage:
    from core.config import get_engine_config
    engine = FaceTransformEngine(get_engine_config())
"""

import yaml
from pathlib import Path
from typing import Any, Dict, Optional
from urllib.parse import urlparse


DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 3000

# Loaded on first use
_config_instance: Optional[Dict[str, Any]] = None


def get_project_root() -> Path:
    """
    Find the directory holding config.yaml, walking up from this package.

    Raises:
        FileNotFoundError: If no parent directory contains config.yaml.
    """
    current_dir = Path(__file__).resolve().parent

    while current_dir != current_dir.parent:
        if (current_dir / "config.yaml").exists():
            return current_dir
        current_dir = current_dir.parent

    raise FileNotFoundError("Could not find config.yaml in any parent directory")


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Read a YAML config file. An empty file yields {}.

    Raises:
        FileNotFoundError: If the file doesn't exist.
        yaml.YAMLError: If the file is not valid YAML.
    """
    path = Path(config_path) if config_path else get_project_root() / "config.yaml"

    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def get_config(reload: bool = False) -> Dict[str, Any]:
    """Return the loaded configuration, reading it on first call or on reload."""
    global _config_instance

    if _config_instance is None or reload:
        _config_instance = load_config()

    return _config_instance


def _section(name: str) -> Dict[str, Any]:
    return get_config().get(name) or {}


def get_engine_config() -> Dict[str, Any]:
    """Scale factors and thresholds for FaceTransformEngine."""
    return _section("engine")


def get_session_config() -> Dict[str, Any]:
    """Session id prefix, inactivity timeout and sweep interval."""
    return _section("session")


def get_api_config() -> Dict[str, Any]:
    return _section("api")


def get_logging_config() -> Dict[str, Any]:
    return _section("logging")


def get_server_config() -> Dict[str, Any]:
    """
    Host and port for uvicorn, taken from api.base_url.

    A localhost base_url binds all interfaces; an unparsable or missing
    port falls back to 3000.
    """
    parsed = urlparse(get_api_config().get("base_url", f"http://localhost:{DEFAULT_PORT}"))

    host = parsed.hostname
    if not host or host == "localhost":
        host = DEFAULT_HOST

    try:
        port = parsed.port or DEFAULT_PORT
    except ValueError:
        port = DEFAULT_PORT

    return {"host": host, "port": port}
