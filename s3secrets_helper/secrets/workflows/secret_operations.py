"""Workflow for loading secrets from S3 into a build's environment."""
import logging
from typing import List

from ..domains.errors import BucketNotFoundError, GatewayError, SinkWriteError
from ..domains.models import DEFAULT_SECRET_SUFFIXES, Config
from .fetcher import ResultStream, fetch_all
from .handlers import handle_envs, handle_git_credentials, handle_secrets, handle_ssh_keys
from .redaction import RedactionRegistry, redact_secrets

logger = logging.getLogger(__name__)


def _log_keys(description: str, keys: List[str]) -> None:
    logger.info(f"Checking S3 for {description}:")
    for key in keys:
        logger.info(f"- {key}")


def get_ssh_keys(conf: Config) -> ResultStream:
    # Pipeline keys first, so they are loaded ahead of the general ones.
    keys = [
        f"{conf.prefix}/private_ssh_key",
        f"{conf.prefix}/id_rsa_github",
        "private_ssh_key",
        "id_rsa_github",
    ]
    _log_keys("SSH keys", keys)
    return fetch_all(conf.client, keys)


def get_envs(conf: Config) -> ResultStream:
    keys = [
        "env",
        "environment",
        f"{conf.prefix}/env",
        f"{conf.prefix}/environment",
    ]
    _log_keys("environment files", keys)
    return fetch_all(conf.client, keys)


def get_git_credentials(conf: Config) -> ResultStream:
    keys = [
        "git-credentials",
        f"{conf.prefix}/git-credentials",
    ]
    _log_keys("git credentials", keys)
    return fetch_all(conf.client, keys)


def get_secrets(conf: Config) -> ResultStream:
    """Discover secret-files by suffix, then fetch them."""
    suffixes = list(conf.secret_suffixes) + [s for s in DEFAULT_SECRET_SUFFIXES if s not in conf.secret_suffixes]
    prefixes = [
        "secret-files",
        f"{conf.prefix}/secret-files",
    ]

    logger.info("Checking S3 for secret-files")
    keys: List[str] = []
    for prefix in prefixes:
        logger.info(f"- {prefix}")
        try:
            keys.extend(conf.client.list_suffix(prefix, suffixes))
        except GatewayError as e:
            logger.warning(f"+++ :warning: Failed to list secrets: {e}")
    return fetch_all(conf.client, keys)


def run(conf: Config) -> RedactionRegistry:
    """
    Download secrets from S3 and load them into ssh-agent, the environment
    and git's credential configuration.

    All four groups of keys are fetched concurrently; their results are
    handled one group at a time, so the env sink is always written in the
    same order. Secret values found along the way are submitted to the
    buildkite-agent redactor at the end.

    Returns:
        The registry of secrets collected for redaction

    Raises:
        BucketNotFoundError: The bucket doesn't exist
        SinkWriteError: The env sink couldn't be written
        AgentError: An SSH key was found but couldn't be loaded
    """
    bucket = conf.client.bucket
    logger.info(f"~~~ Downloading secrets from :s3: {bucket}")

    try:
        exists = conf.client.bucket_exists()
    except GatewayError as e:
        logger.warning(f"+++ :warning: Bucket {bucket!r} not found")
        raise BucketNotFoundError(f"S3 bucket {bucket!r} not found: {e}") from e
    if not exists:
        logger.warning(f"+++ :warning: Bucket {bucket!r} doesn't exist")
        raise BucketNotFoundError(f"S3 bucket {bucket!r} not found")

    registry = RedactionRegistry(conf.redaction)

    results_ssh = get_ssh_keys(conf)
    results_env = get_envs(conf)
    results_git = get_git_credentials(conf)
    results_secrets = get_secrets(conf)

    handle_ssh_keys(conf, results_ssh)
    handle_envs(conf, results_env, registry)
    handle_git_credentials(conf, results_git)
    handle_secrets(conf, results_secrets, registry)

    # The redactor runs as a subprocess; the env stream must be complete first.
    try:
        conf.env_sink.flush()
    except (OSError, ValueError) as e:
        raise SinkWriteError(f"failed to flush env sink: {e}") from e

    if len(registry):
        redact_secrets(conf.buildkite_agent, registry)
    else:
        logger.info("No secrets collected for redaction")

    return registry
