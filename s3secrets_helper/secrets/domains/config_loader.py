"""Configuration loader for s3secrets-helper."""
import os
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml

from .errors import ConfigError
from .models import RedactionLimits

logger = logging.getLogger(__name__)

ENV_BUCKET = "BUILDKITE_PLUGIN_S3_SECRETS_BUCKET"
ENV_PREFIX = "BUILDKITE_PLUGIN_S3_SECRETS_BUCKET_PREFIX"
ENV_REGION = "BUILDKITE_PLUGIN_S3_SECRETS_REGION"
ENV_PIPELINE = "BUILDKITE_PIPELINE_SLUG"
ENV_REPO = "BUILDKITE_REPO"
ENV_CRED_HELPER = "BUILDKITE_PLUGIN_S3_SECRETS_CREDHELPER"
ENV_ENV_SINK = "BUILDKITE_PLUGIN_S3_SECRETS_ENV_SINK"
ENV_SKIP_SSH_KEY_NOT_FOUND_WARNING = "BUILDKITE_PLUGIN_S3_SECRETS_SKIP_SSH_KEY_NOT_FOUND_WARNING"
ENV_CONFIG = "BUILDKITE_PLUGIN_S3_SECRETS_CONFIG"

_ALLOWED_KEYS = {
    "bucket",
    "prefix",
    "region",
    "credential_helper",
    "secret_suffixes",
    "skip_ssh_key_not_found_warning",
    "redaction",
}
_REDACTION_KEYS = {"min_secret_size", "max_secret_size", "max_chunk_size"}


@dataclass
class Settings:
    """Resolved settings for one loader run."""
    bucket: str = ""
    prefix: str = ""
    region: str = ""
    repo: str = ""
    credential_helper: str = ""
    env_sink_path: str = ""
    secret_suffixes: List[str] = field(default_factory=list)
    skip_ssh_key_not_found_warning: bool = False
    redaction: RedactionLimits = field(default_factory=RedactionLimits)


def is_enabled(value: Optional[str]) -> bool:
    """Interpret a flag environment variable: "true" (any case) or "1"."""
    if value is None:
        return False
    return value.lower() == "true" or value == "1"


def load_config_file(config_path: str) -> Dict[str, Any]:
    """
    Load and validate a YAML configuration file.

    Returns:
        Dict containing any of the keys: bucket, prefix, region,
        credential_helper, secret_suffixes, skip_ssh_key_not_found_warning,
        redaction (min_secret_size, max_secret_size, max_chunk_size)

    Raises:
        ConfigError: If the file is missing, unparseable or invalid
    """
    path = Path(config_path)
    if not path.is_file():
        raise ConfigError(
            f"Configuration file not found at: {config_path}\n"
            f"Unset {ENV_CONFIG} or point it at an existing YAML file."
        )

    try:
        with open(path, 'r') as f:
            config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse YAML config at {config_path}: {e}")
    except OSError as e:
        raise ConfigError(f"Failed to read config file at {config_path}: {e}")

    if config is None:
        return {}

    if not isinstance(config, dict):
        raise ConfigError(f"Config file at {config_path} must contain a mapping at the top level")

    unknown = sorted(set(config) - _ALLOWED_KEYS)
    if unknown:
        raise ConfigError(
            f"Unknown keys in config at {config_path}: {', '.join(unknown)}\n"
            f"Allowed keys: {', '.join(sorted(_ALLOWED_KEYS))}"
        )

    for key in ("bucket", "prefix", "region", "credential_helper"):
        if key in config and not isinstance(config[key], str):
            raise ConfigError(f"'{key}' in config must be a string")

    suffixes = config.get("secret_suffixes", [])
    if not isinstance(suffixes, list) or not all(isinstance(s, str) and s for s in suffixes):
        raise ConfigError(
            "'secret_suffixes' in config must be a list of non-empty strings\n"
            "Required format:\n"
            "secret_suffixes:\n"
            "  - _API_KEY"
        )

    if "skip_ssh_key_not_found_warning" in config and not isinstance(config["skip_ssh_key_not_found_warning"], bool):
        raise ConfigError("'skip_ssh_key_not_found_warning' in config must be true or false")

    redaction = config.get("redaction", {})
    if not isinstance(redaction, dict):
        raise ConfigError("'redaction' in config must be a mapping")
    unknown = sorted(set(redaction) - _REDACTION_KEYS)
    if unknown:
        raise ConfigError(f"Unknown keys in 'redaction' config: {', '.join(unknown)}")
    for key, value in redaction.items():
        if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
            raise ConfigError(f"'redaction.{key}' in config must be a positive integer")

    logger.debug(f"Configuration loaded from {config_path}")
    return config


def load_settings(environ: Optional[Mapping[str, str]] = None, config_path: Optional[str] = None) -> Settings:
    """
    Resolve settings from an optional config file and the environment.

    Environment variables override values from the config file.

    Args:
        environ: Environment to read (defaults to os.environ)
        config_path: YAML config file (defaults to $BUILDKITE_PLUGIN_S3_SECRETS_CONFIG)

    Raises:
        ConfigError: If the config file is invalid
    """
    if environ is None:
        environ = os.environ

    config_path = config_path or environ.get(ENV_CONFIG)
    config = load_config_file(config_path) if config_path else {}

    settings = Settings(
        bucket=environ.get(ENV_BUCKET) or config.get("bucket", ""),
        prefix=environ.get(ENV_PREFIX) or config.get("prefix", "") or environ.get(ENV_PIPELINE, ""),
        region=environ.get(ENV_REGION) or config.get("region", ""),
        repo=environ.get(ENV_REPO, ""),
        credential_helper=environ.get(ENV_CRED_HELPER) or config.get("credential_helper", ""),
        env_sink_path=environ.get(ENV_ENV_SINK, ""),
        secret_suffixes=list(config.get("secret_suffixes", [])),
        skip_ssh_key_not_found_warning=(
            is_enabled(environ.get(ENV_SKIP_SSH_KEY_NOT_FOUND_WARNING))
            or config.get("skip_ssh_key_not_found_warning", False)
        ),
    )

    redaction = config.get("redaction", {})
    for key, value in redaction.items():
        setattr(settings.redaction, key, value)
    if settings.redaction.min_secret_size >= settings.redaction.max_secret_size:
        raise ConfigError(
            f"'redaction.min_secret_size' ({settings.redaction.min_secret_size}) must be less than "
            f"'redaction.max_secret_size' ({settings.redaction.max_secret_size})"
        )

    return settings


def validate_settings(settings: Settings) -> None:
    """
    Check the settings a run cannot do without.

    Raises:
        ConfigError: If the prefix or credential helper is missing
    """
    if not settings.prefix:
        raise ConfigError(
            f"One of the {ENV_PREFIX} or {ENV_PIPELINE} environment variables is required, "
            f"set one to configure the bucket key prefix that is scanned for secrets."
        )
    if not settings.credential_helper:
        raise ConfigError(
            f"The {ENV_CRED_HELPER} environment variable is required, "
            f"set it to the path of the git credential helper."
        )
