"""Serve task configuration.

Configuration is loaded from a YAML file (serve.yaml by default) in the
project root. Every key is optional:

    port: 4321
    https: true
    root_path: ./dist
    initial_page: /index.html
    pfx_path: certs/dev.pfx          # or key_path + cert_path
    key_path: certs/dev.key
    cert_path: certs/dev.crt
    try_create_dev_certificate: true
    livereload: true
    api:
      port: 5432
      entry_path: api/routes.py

The config is read once at startup and never mutated; the --port runtime
argument produces a new instance via with_port_override().
"""

import dataclasses
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

try:
    import yaml
except ImportError:
    yaml = None  # type: ignore[assignment]

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "serve.yaml"
DEFAULT_PORT = 4321
DEFAULT_API_PORT = 5432
DEFAULT_INITIAL_PAGE = "/index.html"

_KNOWN_KEYS = {
    "port", "https", "root_path", "initial_page", "pfx_path", "key_path",
    "cert_path", "try_create_dev_certificate", "livereload", "api",
}


class ConfigError(Exception):
    """Configuration error."""


@dataclass(frozen=True)
class ApiConfig:
    """API server descriptor."""
    entry_path: str
    port: int = DEFAULT_API_PORT


@dataclass(frozen=True)
class ServeConfig:
    """Configuration for the static file server and optional API server."""
    root_path: Path = Path(".")
    port: int = DEFAULT_PORT
    https: bool = False
    initial_page: str = DEFAULT_INITIAL_PAGE
    api: Optional[ApiConfig] = None
    pfx_path: Optional[Path] = None
    key_path: Optional[Path] = None
    cert_path: Optional[Path] = None
    try_create_dev_certificate: bool = False
    livereload: bool = True

    @property
    def scheme(self) -> str:
        return "https" if self.https else "http"


def with_port_override(config: ServeConfig, port: Optional[int]) -> ServeConfig:
    """Return config with the static port replaced (API port is untouched)."""
    if port is None:
        return config
    return dataclasses.replace(config, port=port)


def _parse_yaml(path: Path) -> dict:
    """Parse a YAML file and return contents."""
    if yaml is None:
        raise ConfigError("PyYAML not installed. Run: pip install pyyaml")
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a mapping, got {type(data).__name__}")
    return data


def _resolve_path(value, base: Path) -> Optional[Path]:
    if not value:
        return None
    path = Path(value).expanduser()
    return path if path.is_absolute() else base / path


def _parse_api(data, base_name: Path) -> Optional[ApiConfig]:
    if not data:
        return None
    if not isinstance(data, dict):
        raise ConfigError(f"'api' in {base_name} must be a mapping")
    entry_path = data.get("entry_path")
    if not entry_path:
        raise ConfigError(f"'api.entry_path' is required in {base_name}")
    return ApiConfig(
        entry_path=str(entry_path),
        port=int(data.get("port") or DEFAULT_API_PORT),
    )


def config_from_dict(data: dict, project_dir: Path, source: Path = Path(DEFAULT_CONFIG_FILE)) -> ServeConfig:
    """Build a ServeConfig from a parsed config mapping.

    Args:
        data: Parsed config mapping
        project_dir: Directory relative paths are resolved against
        source: Config file name (for error messages)

    Returns:
        ServeConfig
    """
    for key in sorted(set(data) - _KNOWN_KEYS):
        logger.warning("Ignoring unknown config key '%s' in %s", key, source)

    root_path = _resolve_path(data.get("root_path"), project_dir) or project_dir

    return ServeConfig(
        root_path=root_path,
        port=int(data.get("port") or DEFAULT_PORT),
        https=bool(data.get("https", False)),
        initial_page=str(data.get("initial_page") or DEFAULT_INITIAL_PAGE),
        api=_parse_api(data.get("api"), source),
        pfx_path=_resolve_path(data.get("pfx_path"), project_dir),
        key_path=_resolve_path(data.get("key_path"), project_dir),
        cert_path=_resolve_path(data.get("cert_path"), project_dir),
        try_create_dev_certificate=bool(data.get("try_create_dev_certificate", False)),
        livereload=bool(data.get("livereload", True)),
    )


def load_serve_config(config_file: Optional[Path] = None, project_dir: Optional[Path] = None) -> ServeConfig:
    """Load serve configuration.

    Resolution:
    1. Explicit config_file (must exist)
    2. serve.yaml in project_dir (defaults if absent)

    Raises:
        ConfigError: If the file is missing (explicit only) or malformed
    """
    if config_file is not None:
        config_file = Path(config_file)
        if not config_file.exists():
            raise ConfigError(f"Config file not found: {config_file}")
        base = Path(project_dir) if project_dir else config_file.resolve().parent
        logger.debug("Loading config from %s", config_file)
        return config_from_dict(_parse_yaml(config_file), base, config_file)

    base = Path(project_dir) if project_dir else Path.cwd()
    default_file = base / DEFAULT_CONFIG_FILE
    if not default_file.exists():
        logger.debug("No %s in %s, using defaults", DEFAULT_CONFIG_FILE, base)
        return config_from_dict({}, base, default_file)

    logger.debug("Loading config from %s", default_file)
    return config_from_dict(_parse_yaml(default_file), base, default_file)
