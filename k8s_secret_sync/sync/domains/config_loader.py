"""Configuration loader for k8s-secret-sync."""
import os
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple, TypeVar
import yaml

from .annotations import (
    AnnotationKeys,
    DEFAULT_ANNOTATION_PREFIX,
    DEFAULT_SECRET_DATA_KEY,
    LAST_SYNCED_ANNOTATION,
    is_valid_annotation_key,
)

logger = logging.getLogger(__name__)

CONFIG_FILE_ENV = "KSS_CONFIG_FILE"
DEFAULT_POLL_INTERVAL = 300
DEFAULT_PROVIDERS = ("op",)
DEFAULT_OP_TOKEN_ENV = "OP_SERVICE_ACCOUNT_TOKEN"

# Providers this build knows how to construct.
KNOWN_PROVIDERS = ("op", "gcp")

T = TypeVar("T", str, int, bool)

_TRUE_VALUES = {"1", "t", "true", "yes", "y", "on"}
_FALSE_VALUES = {"0", "f", "false", "no", "n", "off"}


class ConfigError(Exception):
    """Configuration error exception."""
    pass


@dataclass(frozen=True)
class SyncConfig:
    """Process-wide settings, fixed at startup."""
    annotations: AnnotationKeys
    default_secret_key: str = DEFAULT_SECRET_DATA_KEY
    poll_interval: int = DEFAULT_POLL_INTERVAL
    watch_namespace: Optional[str] = None
    providers: Tuple[str, ...] = DEFAULT_PROVIDERS
    op_token_env: str = DEFAULT_OP_TOKEN_ENV
    gcp_project_id: Optional[str] = None
    gcp_service_account_path: Optional[str] = None
    log_level: str = "INFO"
    source: Optional[str] = field(default=None, compare=False)


def env(name: str, default: T) -> T:
    """
    Read an environment variable typed like ``default``.

    Unset, empty and unparsable values all yield ``default``.
    """
    value = os.getenv(name)
    if not value:
        return default

    if isinstance(default, bool):
        lowered = value.strip().lower()
        if lowered in _TRUE_VALUES:
            return True
        if lowered in _FALSE_VALUES:
            return False
        logger.warning(f"Ignoring non-boolean value for {name}: {value!r}")
        return default

    if isinstance(default, int):
        try:
            return int(value)
        except ValueError:
            logger.warning(f"Ignoring non-integer value for {name}: {value!r}")
            return default

    return value


def _get_config_path() -> Optional[str]:
    """
    Get the optional YAML config file path.

    Returns:
        Path from KSS_CONFIG_FILE, or None when no file is configured

    Raises:
        ConfigError: If KSS_CONFIG_FILE points to a missing file
    """
    config_path = os.getenv(CONFIG_FILE_ENV)
    if not config_path:
        return None

    if not os.path.isfile(config_path):
        raise ConfigError(
            f"Configuration file not found at: {config_path}\n"
            f"Unset {CONFIG_FILE_ENV} or point it to an existing YAML file."
        )
    return config_path


def _read_config_file(config_path: str) -> Dict[str, Any]:
    """Load the YAML config file into a dict."""
    try:
        with open(config_path, 'r') as f:
            content = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse YAML config at {config_path}: {e}")
    except OSError as e:
        raise ConfigError(f"Failed to read config file at {config_path}: {e}")

    if content is None:
        logger.warning(f"Config file at {config_path} is empty, using defaults")
        return {}

    if not isinstance(content, dict):
        raise ConfigError(f"Config file at {config_path} must contain a YAML mapping")

    return content


def _section(content: Dict[str, Any], name: str) -> Dict[str, Any]:
    section = content.get(name) or {}
    if not isinstance(section, dict):
        raise ConfigError(f"'{name}' section in config must be a mapping")
    return section


def _parse_providers(raw: Any) -> Tuple[str, ...]:
    if isinstance(raw, str):
        names = [part.strip() for part in raw.split(",")]
    elif isinstance(raw, (list, tuple)):
        names = [str(part).strip() for part in raw]
    else:
        raise ConfigError(f"'providers' must be a list or comma separated string, got {raw!r}")

    names = [name for name in names if name]
    if not names:
        raise ConfigError("At least one provider must be enabled")

    unknown = [name for name in names if name not in KNOWN_PROVIDERS]
    if unknown:
        raise ConfigError(
            f"Unsupported provider(s) in configuration: {', '.join(unknown)}\n"
            f"Supported providers: {', '.join(KNOWN_PROVIDERS)}"
        )
    return tuple(dict.fromkeys(names))


def validate_annotation_keys(keys: AnnotationKeys) -> None:
    """
    Validate configured annotation keys.

    Raises:
        ConfigError: If a key is malformed or collides with another role
    """
    roles = {
        "provider name": keys.provider_name,
        "provider reference": keys.provider_ref,
        "secret key": keys.secret_key,
    }
    for role, key in roles.items():
        if not is_valid_annotation_key(key):
            raise ConfigError(f"Invalid annotation key for {role}: {key!r}")
        if key == LAST_SYNCED_ANNOTATION:
            raise ConfigError(f"Annotation key for {role} collides with the '{LAST_SYNCED_ANNOTATION}' marker")

    if len(set(roles.values())) != len(roles):
        raise ConfigError("Annotation keys for provider name, reference and secret key must be distinct")


def load_config() -> SyncConfig:
    """
    Load and validate configuration.

    Environment variables win over the optional YAML file, which wins over
    built-in defaults.

    Returns:
        SyncConfig with every setting resolved

    Raises:
        ConfigError: If the file is unreadable or any setting is invalid
    """
    # Resolved on every call so tests and CLI overrides take effect immediately
    config_path = _get_config_path()
    content = _read_config_file(config_path) if config_path else {}

    annotation_section = _section(content, "annotations")
    gcp_section = _section(content, "gcp")
    onepassword_section = _section(content, "onepassword")

    prefix = env("KSS_SECRET_ANNOTATION_PREFIX", annotation_section.get("prefix") or DEFAULT_ANNOTATION_PREFIX)
    defaults = AnnotationKeys.from_prefix(prefix)
    keys = AnnotationKeys(
        prefix=prefix,
        provider_name=env(
            "KSS_SECRET_ANNOTATION_KEY_PROVIDER_NAME",
            annotation_section.get("provider_name") or defaults.provider_name,
        ),
        provider_ref=env(
            "KSS_SECRET_ANNOTATION_KEY_PROVIDER_REF",
            annotation_section.get("provider_ref") or defaults.provider_ref,
        ),
        secret_key=env(
            "KSS_SECRET_ANNOTATION_KEY_SECRET_KEY",
            annotation_section.get("secret_key") or defaults.secret_key,
        ),
    )
    validate_annotation_keys(keys)

    default_secret_key = env(
        "KSS_DEFAULT_SECRET_DATA_KEY",
        str(content.get("default_secret_key") or DEFAULT_SECRET_DATA_KEY),
    )

    file_interval = content.get("poll_interval", DEFAULT_POLL_INTERVAL)
    try:
        file_interval = int(file_interval)
    except (TypeError, ValueError):
        raise ConfigError(f"'poll_interval' must be an integer, got {file_interval!r}")
    poll_interval = env("KSS_POLL_INTERVAL", file_interval)
    if poll_interval <= 0:
        raise ConfigError(f"Poll interval must be a positive number of seconds, got {poll_interval}")

    providers = _parse_providers(env("KSS_PROVIDERS", "") or content.get("providers") or list(DEFAULT_PROVIDERS))

    gcp_project_id = (
        env("KSS_GCP_PROJECT", "")
        or env("GCP_PROJECT", "")
        or gcp_section.get("project_id")
        or None
    )
    service_account_path = env("KSS_GCP_SERVICE_ACCOUNT_PATH", "") or gcp_section.get("service_account_path") or None
    if service_account_path and not os.path.isfile(service_account_path):
        raise ConfigError(
            f"Service account file not found at: {service_account_path}\n"
            f"Please ensure the file exists or update the GCP settings."
        )

    config = SyncConfig(
        annotations=keys,
        default_secret_key=default_secret_key,
        poll_interval=poll_interval,
        watch_namespace=env("KSS_WATCH_NAMESPACE", str(content.get("watch_namespace") or "")) or None,
        providers=providers,
        op_token_env=env("KSS_OP_TOKEN_ENV", onepassword_section.get("token_env") or DEFAULT_OP_TOKEN_ENV),
        gcp_project_id=gcp_project_id,
        gcp_service_account_path=service_account_path,
        log_level=env("KSS_LOG_LEVEL", str(content.get("log_level") or "INFO")).upper(),
        source=config_path,
    )

    if config_path:
        logger.info(f"Configuration loaded from {config_path}")
    logger.debug(f"Annotation keys: {keys}")
    logger.debug(f"Enabled providers: {', '.join(providers)}")

    return config
