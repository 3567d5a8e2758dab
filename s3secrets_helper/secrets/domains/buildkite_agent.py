"""Wrapper around the buildkite-agent binary's redactor commands."""
import logging
import sys
import shutil
import subprocess

from .errors import RedactionError

logger = logging.getLogger(__name__)

AGENT_BINARY = "buildkite-agent"


class BuildkiteAgent:
    """Capabilities of the locally installed buildkite-agent, detected once."""

    def __init__(self, detect: bool = True):
        self._version = ""
        self._supports_redactor = False
        if detect:
            self._detect_capabilities()

    def version(self) -> str:
        """Agent version, "unknown" if unparseable, empty if not installed."""
        return self._version

    def supports_redactor(self) -> bool:
        return self._supports_redactor

    def redactor_add_secrets_from_json(self, filepath: str) -> None:
        """
        Register every value of a JSON object file with the log redactor.

        Raises:
            RedactionError: If the agent command fails
        """
        try:
            subprocess.run(
                [AGENT_BINARY, "redactor", "add", "--format", "json", filepath],
                stdout=sys.stderr,
                check=True,
            )
        except (OSError, subprocess.CalledProcessError) as e:
            raise RedactionError(f"{AGENT_BINARY} command failed: {e}") from e

    def _detect_capabilities(self) -> None:
        if shutil.which(AGENT_BINARY) is None:
            return

        # e.g. "buildkite-agent version 3.73.0, build 123"
        try:
            result = subprocess.run([AGENT_BINARY, "--version"], capture_output=True, text=True, check=True)
            parts = result.stdout.strip().split()
            self._version = parts[2].rstrip(",") if len(parts) >= 3 else "unknown"
        except (OSError, subprocess.CalledProcessError) as e:
            logger.debug(f"{AGENT_BINARY} --version failed: {e}")
            self._version = "unknown"

        # Without the redactor subcommand the agent prints its general help instead.
        try:
            result = subprocess.run(
                [AGENT_BINARY, "redactor", "add", "--help"], capture_output=True, text=True, check=True
            )
        except (OSError, subprocess.CalledProcessError) as e:
            logger.debug(f"{AGENT_BINARY} redactor add --help failed: {e}")
            return
        self._supports_redactor = "redactor" in result.stdout
