"""Wrapper around the ssh-agent and ssh-add binaries."""
import os
import re
import logging
import subprocess

from .errors import AgentError

logger = logging.getLogger(__name__)

ENV_PID = "SSH_AGENT_PID"
ENV_SOCK = "SSH_AUTH_SOCK"

_SOCK_RE = re.compile(r"^SSH_AUTH_SOCK=(.*); export SSH_AUTH_SOCK;$", re.MULTILINE)
_PID_RE = re.compile(r"^SSH_AGENT_PID=(.*); export SSH_AGENT_PID;$", re.MULTILINE)


def parse_output_sock(output: str) -> str:
    """Extract SSH_AUTH_SOCK from `ssh-agent -s` output."""
    match = _SOCK_RE.search(output)
    if match is None:
        raise AgentError(f"{ENV_SOCK} not found in ssh-agent output")
    return match.group(1)


def parse_output_pid(output: str) -> int:
    """Extract SSH_AGENT_PID from `ssh-agent -s` output."""
    match = _PID_RE.search(output)
    if match is None:
        raise AgentError(f"{ENV_PID} not found in ssh-agent output")
    try:
        return int(match.group(1))
    except ValueError as e:
        raise AgentError(f"error parsing {ENV_PID}={match.group(1)!r} as integer: {e}") from e


class Agent:
    """
    An ssh-agent process, started on demand.

    `ssh-agent -s` prints something like:

        SSH_AUTH_SOCK=/path/to/socket; export SSH_AUTH_SOCK;
        SSH_AGENT_PID=42; export SSH_AGENT_PID;
        echo Agent pid 42

    That output is kept verbatim so it can be evaluated by the calling shell.
    """

    def __init__(self):
        self._pid = 0
        self._sock = ""
        self._out = b""

    @property
    def pid(self) -> int:
        return self._pid

    def run(self) -> bool:
        """
        Ensure an ssh-agent is running.

        Adopts an agent described by SSH_AUTH_SOCK and SSH_AGENT_PID if both
        are set, otherwise starts one.

        Returns:
            True only if this call started the agent
        """
        if self._pid and self._sock:
            return False

        sock, pid = os.getenv(ENV_SOCK), os.getenv(ENV_PID)
        if sock and pid:
            try:
                self._pid = int(pid)
            except ValueError as e:
                raise AgentError(f"{ENV_PID}: {e}") from e
            self._sock = sock
            logger.debug(f"Using existing ssh-agent (pid {self._pid})")
            return False

        try:
            result = subprocess.run(["ssh-agent", "-s"], capture_output=True, check=True)
        except (OSError, subprocess.CalledProcessError) as e:
            raise AgentError(f"running ssh-agent: {e}") from e

        output = result.stdout.decode("utf-8", errors="replace")
        self._sock = parse_output_sock(output)
        self._pid = parse_output_pid(output)
        self._out = result.stdout
        return True

    def add(self, key: bytes) -> None:
        """Load a private key into the agent via `ssh-add -`."""
        if not self._pid or not self._sock:
            raise AgentError("Agent must run() before add()")
        env = {
            "PATH": os.environ.get("PATH", os.defpath),
            ENV_PID: str(self._pid),
            ENV_SOCK: self._sock,
            "SSH_ASKPASS": "/bin/false",
        }
        try:
            subprocess.run(["ssh-add", "-"], input=key + b"\n", env=env, capture_output=True, check=True)
        except (OSError, subprocess.CalledProcessError) as e:
            raise AgentError(f"running ssh-add: {e}") from e

    def stdout(self) -> bytes:
        """Output of `ssh-agent -s`, empty if this process didn't start the agent."""
        return self._out
