"""
Configuration loading for the MineOS control tool.

Handles the tool's own config.yaml and the stack's .env settings file.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml
from dotenv import dotenv_values, set_key

from .utils import get_logger


DEFAULT_API_PORT = "5078"
DEFAULT_SHUTDOWN_TIMEOUT = 300
USER_CONFIG_DIR = Path.home() / ".config" / "mineos"

LOG_SOURCES = ("combined", "server", "java", "crash")

API_KEY_ENV = "MINEOS_API_KEY"


class ConfigError(Exception):
    """Configuration error."""
    pass


@dataclass
class StackConfig:
    """Where the stack's settings file lives."""
    env_file: Path = Path(".env")


@dataclass
class ApiConfig:
    """Management API connection settings."""
    host: str = "localhost"
    request_timeout: float = 15.0


@dataclass
class DashboardConfig:
    """Dashboard preferences."""
    log_source: str = "combined"
    refresh_interval: float = 5.0


@dataclass
class LoggingConfig:
    """Logging configuration."""
    file: Path = USER_CONFIG_DIR / "mineos-cli.log"
    level: str = "INFO"


@dataclass
class CliConfig:
    """Complete control tool configuration."""
    stack: StackConfig = field(default_factory=StackConfig)
    api: ApiConfig = field(default_factory=ApiConfig)
    dashboard: DashboardConfig = field(default_factory=DashboardConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    source: Optional[Path] = None


@dataclass
class Settings:
    """Values read from the stack's .env settings file."""
    env_path: Path
    api_port: str = ""
    web_origin: str = ""
    network_mode: str = ""
    build_from_source: str = ""
    api_key_seed: str = ""
    api_key_static: str = ""
    management_api_key: str = ""
    minecraft_host: str = ""
    database_type: str = ""
    database_connection: str = ""
    data_directory: str = ""
    shutdown_timeout: str = ""

    @property
    def effective_api_key(self) -> str:
        """The credential to send: managed key, then static key, then seed key."""
        for value in (self.management_api_key, self.api_key_static, self.api_key_seed):
            if value.strip():
                return value.strip()
        return ""

    @property
    def effective_api_port(self) -> str:
        return self.api_port.strip() or DEFAULT_API_PORT

    @property
    def build_from_source_enabled(self) -> bool:
        return parse_bool(self.build_from_source)


def parse_bool(value: str) -> bool:
    """Interpret common truthy strings ("1", "true", "yes", "on")."""
    return (value or "").strip().lower() in ("1", "t", "true", "y", "yes", "on")


def find_config_file() -> Optional[Path]:
    """
    Find the config file in standard locations.

    Returns:
        Path to config file, or None if not found
    """
    # Check same directory as the launcher script first
    script_dir = Path(__file__).parent.parent
    local_config = script_dir / "config.yaml"
    if local_config.exists():
        return local_config

    user_config = USER_CONFIG_DIR / "config.yaml"
    if user_config.exists():
        return user_config

    return None


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a YAML file and return its contents."""
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}")
    except OSError as e:
        raise ConfigError(f"Could not read {path}: {e}")

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a mapping at the top of {path}")
    return data


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    section = data.get(name) or {}
    if not isinstance(section, dict):
        raise ConfigError(f"Section '{name}' must be a mapping")
    return section


def _number(section: dict[str, Any], key: str, default: float, name: str) -> float:
    value = section.get(key, default)
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{name}.{key} must be a number, got {value!r}")


def _resolve(path_str: str, base: Path) -> Path:
    path = Path(path_str).expanduser()
    if not path.is_absolute():
        path = base / path
    return path


def parse_cli_config(data: dict[str, Any], base_dir: Path) -> CliConfig:
    """Build a CliConfig from parsed YAML, resolving relative paths against base_dir."""
    stack_data = _section(data, 'stack')
    api_data = _section(data, 'api')
    dashboard_data = _section(data, 'dashboard')
    logging_data = _section(data, 'logging')

    log_source = str(dashboard_data.get('log_source', 'combined')).strip().lower()
    if log_source not in LOG_SOURCES:
        raise ConfigError(
            f"dashboard.log_source must be one of {', '.join(LOG_SOURCES)}, got {log_source!r}"
        )

    config = CliConfig(
        api=ApiConfig(
            host=str(api_data.get('host', 'localhost')).strip() or 'localhost',
            request_timeout=_number(api_data, 'request_timeout', 15.0, 'api'),
        ),
        dashboard=DashboardConfig(
            log_source=log_source,
            refresh_interval=_number(dashboard_data, 'refresh_interval', 5.0, 'dashboard'),
        ),
        logging=LoggingConfig(level=str(logging_data.get('level', 'INFO'))),
    )

    env_file = stack_data.get('env_file')
    if env_file:
        config.stack.env_file = _resolve(str(env_file), base_dir)

    log_file = logging_data.get('file')
    if log_file:
        config.logging.file = _resolve(str(log_file), USER_CONFIG_DIR)

    return config


def load_cli_config(path: Optional[Path] = None) -> CliConfig:
    """
    Load the control tool configuration.

    A missing config file is not an error; defaults are used.

    Raises:
        ConfigError: If the file exists but is invalid
    """
    logger = get_logger()

    config_path = path or find_config_file()
    if config_path is None:
        logger.debug("No config.yaml found, using defaults")
        return CliConfig()

    if path is not None and not path.exists():
        raise ConfigError(f"Config file not found: {path}")

    logger.debug(f"Loading config from: {config_path}")
    config = parse_cli_config(load_yaml_file(config_path), config_path.parent)
    config.source = config_path
    return config


def resolve_env_path(path: Optional[Path]) -> Path:
    """Return an absolute settings file path (default ./.env)."""
    env_path = Path(path) if path else Path(".env")
    return env_path.expanduser().resolve()


def load_settings(env_path: Path) -> Settings:
    """
    Read the stack's settings file.

    Raises:
        ConfigError: If the file does not exist or cannot be read
    """
    env_path = resolve_env_path(env_path)
    if not env_path.exists():
        raise ConfigError(f"Settings file not found: {env_path}")

    try:
        values = dotenv_values(env_path)
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigError(f"Could not read {env_path}: {e}")

    def get(key: str) -> str:
        return (values.get(key) or "").strip()

    return Settings(
        env_path=env_path,
        api_port=get("API_PORT"),
        web_origin=get("WEB_ORIGIN_PROD") or get("ORIGIN"),
        network_mode=get("MINEOS_NETWORK_MODE"),
        build_from_source=get("MINEOS_BUILD_FROM_SOURCE"),
        api_key_seed=get("ApiKey__SeedKey"),
        api_key_static=get("ApiKey__StaticKey"),
        management_api_key=get(API_KEY_ENV),
        minecraft_host=get("PUBLIC_MINECRAFT_HOST"),
        database_type=get("DB_TYPE"),
        database_connection=get("ConnectionStrings__DefaultConnection"),
        data_directory=get("Data__Directory"),
        shutdown_timeout=get("MINEOS_SHUTDOWN_TIMEOUT"),
    )


def set_env_value(env_path: Path, key: str, value: str) -> None:
    """
    Set one key in the settings file, rewriting the whole file.

    Concurrent writers are not coordinated; the last writer wins.

    Raises:
        ConfigError: If the file cannot be written
    """
    env_path = resolve_env_path(env_path)
    try:
        set_key(str(env_path), key, value, quote_mode="never")
    except OSError as e:
        raise ConfigError(f"Could not update {env_path}: {e}")
    get_logger().debug(f"Updated {key} in {env_path}")


def effective_shutdown_timeout(
    override: int = 0,
    config_value: Optional[str] = None,
    default: int = DEFAULT_SHUTDOWN_TIMEOUT
) -> int:
    """
    Resolve the server-level shutdown budget in seconds.

    A positive override wins, then a positive configured value, then default.
    """
    if override and override > 0:
        return override
    value = (config_value or "").strip()
    if value:
        try:
            parsed = int(value)
        except ValueError:
            parsed = 0
        if parsed > 0:
            return parsed
    return default
