"""Handlers that route fetched secrets to the ssh-agent and the environment."""
import io
import logging
from typing import Iterable, List

from dotenv import dotenv_values

from ..domains.errors import AgentError, SinkWriteError
from ..domains.models import DEFAULT_SECRET_SUFFIXES, Config, FetchResult
from .redaction import RedactionRegistry

logger = logging.getLogger(__name__)

_SHORT_ESCAPES = {
    "\a": "\\a",
    "\b": "\\b",
    "\f": "\\f",
    "\n": "\\n",
    "\r": "\\r",
    "\t": "\\t",
    "\v": "\\v",
    "\\": "\\\\",
    '"': '\\"',
}


def is_secret_var(name: str) -> bool:
    """True if a variable name ends with one of the secret suffixes."""
    return name.endswith(DEFAULT_SECRET_SUFFIXES)


def quote_value(value: str) -> str:
    """
    Double-quote a value, escaping backslashes, quotes and anything unprintable.

    Printable characters (including non-ASCII) pass through unchanged; bytes
    that were not valid UTF-8 come back out as \\x escapes.
    """
    out = ['"']
    for ch in value:
        if ch in _SHORT_ESCAPES:
            out.append(_SHORT_ESCAPES[ch])
        elif ch.isprintable():
            out.append(ch)
        elif 0xDC80 <= ord(ch) <= 0xDCFF:
            # undecodable byte kept by surrogateescape
            out.append(f"\\x{ord(ch) - 0xDC00:02x}")
        elif ord(ch) < 0x80:
            out.append(f"\\x{ord(ch):02x}")
        elif ord(ch) <= 0xFFFF:
            out.append(f"\\u{ord(ch):04x}")
        else:
            out.append(f"\\U{ord(ch):08x}")
    out.append('"')
    return "".join(out)


def _write(conf: Config, data: bytes, what: str) -> None:
    try:
        conf.env_sink.write(data)
    except (OSError, ValueError) as e:
        raise SinkWriteError(f"failed to write {what}: {e}") from e


def _skip(result: FetchResult, description: str) -> bool:
    """Log a failed fetch unless it is an expected miss; True if the result should be skipped."""
    if result.ok:
        return False
    if not result.expected_miss:
        logger.warning(f"+++ :warning: Failed to {description} {result.bucket}/{result.key}: {result.error}")
    return True


def handle_ssh_keys(conf: Config, results: Iterable[FetchResult]) -> None:
    """
    Load every SSH key found into the ssh-agent, starting it if needed.

    The agent's startup output is copied to the env sink so the calling
    shell picks up SSH_AUTH_SOCK and SSH_AGENT_PID.

    Raises:
        AgentError: If the agent can't be started or a key can't be added
        SinkWriteError: If the agent output can't be written
    """
    agent = conf.ssh_agent
    key_found = False
    for r in results:
        if _skip(r, "download ssh-key"):
            continue
        if agent.run():
            logger.info(f"Started ephemeral ssh-agent (pid {agent.pid})")
        logger.info(f"Loading {r.bucket}/{r.key} ({len(r.data)} bytes) into ssh-agent (pid {agent.pid})")
        try:
            agent.add(r.data)
        except AgentError as e:
            raise AgentError(f"failed to add {r.key} to ssh-agent: {e}") from e
        key_found = True

    if not key_found and conf.repo.startswith("git@") and not conf.skip_ssh_key_not_found_warning:
        logger.warning("+++ :warning: Failed to find an SSH key in secret bucket")
        logger.warning(
            f"The repository {conf.repo!r} appears to use SSH for transport, "
            f"but no SSH keys were found in the {conf.bucket!r} S3 bucket."
        )

    _write(conf, agent.stdout(), "ssh-agent env")


def handle_envs(conf: Config, results: Iterable[FetchResult], registry: RedactionRegistry) -> None:
    """
    Append environment files to the env sink verbatim.

    Each file is also parsed as dotenv so values of secret-looking
    variables can be marked for redaction.

    Raises:
        SinkWriteError: If the env sink can't be written
    """
    for r in results:
        if _skip(r, "download env from"):
            continue
        if not r.data:
            continue

        data = r.data if r.data.endswith(b"\n") else r.data + b"\n"
        logger.info(f"Loading {r.bucket}/{r.key} ({len(r.data)} bytes) of env")

        try:
            env_map = dotenv_values(stream=io.StringIO(r.data.decode("utf-8")))
        except Exception as e:
            logger.warning(f"Warning: failed to parse env file {r.bucket}/{r.key}: {e}")
        else:
            for key, value in env_map.items():
                if value and is_secret_var(key):
                    registry.mark(value, source=r.key)

        _write(conf, data, "environment data")


def handle_git_credentials(conf: Config, results: Iterable[FetchResult]) -> None:
    """
    Point git at the credential helper for every git-credentials file found.

    Emits a single GIT_CONFIG_PARAMETERS line, or nothing if none were found.

    Raises:
        SinkWriteError: If the env sink can't be written
    """
    helpers: List[str] = []
    escaped_helper = conf.git_credential_helper.replace(" ", "\\ ")
    for r in results:
        if _skip(r, "check"):
            continue
        logger.info(f"Adding git-credentials in {r.bucket}/{r.key} as a credential helper")
        helpers.append(f"credential.helper={escaped_helper} {r.bucket} {conf.client.region} {r.key}")

    if not helpers:
        return

    # The shell evaluating this line strips one level of backslashes.
    quoted = " ".join("'" + helper.replace("\\", "\\\\") + "'" for helper in helpers)
    _write(conf, f'GIT_CONFIG_PARAMETERS="{quoted}"\n'.encode("utf-8"), "GIT_CONFIG_PARAMETERS env")


def handle_secrets(conf: Config, results: Iterable[FetchResult], registry: RedactionRegistry) -> None:
    """
    Export each secret file as a variable named after the last part of its key.

    Both the raw value and its escaped form are marked for redaction, since
    escaping can turn e.g. newlines into a different literal sequence.

    Raises:
        SinkWriteError: If the env sink can't be written
    """
    lines = []
    for r in results:
        if _skip(r, "download secret"):
            continue
        logger.info(f"Adding secret {r.bucket}/{r.key} to environment")
        name = r.key.rsplit("/", 1)[-1]

        value = r.data.decode("utf-8", errors="surrogateescape")
        registry.mark(value, source=r.key)

        quoted = quote_value(value)
        escaped = quoted[1:-1]
        if escaped != value:
            registry.mark(escaped, source=r.key)

        lines.append(f"{name}={quoted}")

    if not lines:
        logger.info(f"No secrets found in {conf.prefix!r}")
        return

    _write(conf, ("\n".join(lines) + "\n").encode("utf-8"), "secrets to environment")
