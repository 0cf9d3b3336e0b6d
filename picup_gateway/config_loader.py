"""Configuration loader for the upload gateway - TOML file plus environment overrides."""

from __future__ import annotations

import logging
import os
import tomllib
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv

from .app import GatewayConfig
from .categories import CategoryTable

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "PICUP_CONFIG"
DEFAULT_CONFIG_NAME = "picup-srv.toml"
DEFAULT_STORAGE_DIR = "picup-data"


class ConfigError(Exception):
    """Configuration is missing or invalid."""
    pass


def _resolve_config_path(config_path: Optional[Path | str]) -> Path:
    if config_path is not None:
        return Path(config_path)
    env_value = os.getenv(CONFIG_ENV_VAR)
    if env_value:
        return Path(env_value)
    return Path.cwd() / DEFAULT_CONFIG_NAME


def _load_server_table(path: Path) -> Dict[str, Any]:
    if not path.is_file():
        raise ConfigError(f"failed to find config file! it should be in [{path}].")
    try:
        data = tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"invalid config file {path}: {exc}") from exc
    server = data.get("server")
    if not isinstance(server, dict):
        raise ConfigError(f"config file {path} has no [server] table")
    return server


def load_config(config_path: Optional[Path | str] = None) -> GatewayConfig:
    """
    Load GatewayConfig from the TOML config file and environment variables.

    Loads .env file if present. Environment values win over the file.

    Environment Variables:
        PICUP_CONFIG: Path of the TOML file (default: ./picup-srv.toml)
        PICUP_TOKEN: Shared access token
        PICUP_HOST: Bind address (default: 0.0.0.0)
        PICUP_PORT: Listening port (default: 19190)
        PICUP_URL: Public URL prefix (default: http://127.0.0.1:<port>)
        PICUP_DIRECTORY: Storage root directory, relative to the working directory (default: ./picup-data)
        PICUP_TIMEOUT: Per-request timeout in seconds (default: 30)

    Raises:
        ConfigError: File missing or unreadable, no token, or no categories
    """
    load_dotenv()

    path = _resolve_config_path(config_path)
    server = _load_server_table(path)

    token = os.getenv("PICUP_TOKEN") or server.get("token")
    if not token:
        raise ConfigError("no token provided")

    categories = server.get("categories")
    if not isinstance(categories, dict) or not categories:
        raise ConfigError("no category provided")
    try:
        category_table = CategoryTable.from_mapping(categories)
    except ValueError as exc:
        raise ConfigError(str(exc)) from exc

    try:
        port = int(os.getenv("PICUP_PORT", server.get("port", 19190)))
        timeout = float(os.getenv("PICUP_TIMEOUT", server.get("timeout", 30)))
        max_body_size = int(server.get("max_body_size", GatewayConfig.max_body_size))
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"invalid numeric setting: {exc}") from exc

    url = os.getenv("PICUP_URL") or server.get("url") or f"http://127.0.0.1:{port}"
    directory = Path(os.getenv("PICUP_DIRECTORY") or server.get("directory") or DEFAULT_STORAGE_DIR)
    if not directory.is_absolute():
        directory = Path.cwd() / directory

    config = GatewayConfig(
        access_token=str(token),
        categories=category_table,
        storage_root=directory,
        url_prefix=str(url).rstrip("/"),
        host=os.getenv("PICUP_HOST", server.get("host", "0.0.0.0")),
        port=port,
        request_timeout=timeout,
        max_body_size=max_body_size,
    )
    logger.info(f"Loaded config from {path}: categories={list(category_table)}, root={directory}")
    return config
