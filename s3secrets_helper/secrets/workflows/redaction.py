"""Collecting secrets for log redaction and submitting them in batches."""
import os
import json
import logging
import tempfile
import threading
from typing import Dict, Iterator, List, Optional

from ..domains.errors import RedactionError
from ..domains.models import RedactionLimits, RedactionTool, SecretCandidate

logger = logging.getLogger(__name__)

# Minimum JSON structure size (braces etc), the starting point for chunk size estimates.
BASE_JSON_OVERHEAD = 50


def byte_size(value: str) -> int:
    """UTF-8 length of a value, counting undecodable bytes as one each."""
    return len(value.encode("utf-8", "surrogateescape"))


class RedactionRegistry:
    """
    Secrets to hand to the redactor at the end of a run.

    Values are trimmed and kept once each, in the order they were first
    marked. Values whose trimmed UTF-8 size is outside the redactor's limits
    are rejected when marked.
    """

    def __init__(self, limits: Optional[RedactionLimits] = None):
        self.limits = limits or RedactionLimits()
        self._candidates: Dict[str, SecretCandidate] = {}
        self._lock = threading.Lock()

    def mark(self, value: str, source: Optional[str] = None) -> bool:
        """
        Mark a value for redaction.

        Returns:
            True if the value was added, False if it was empty, rejected
            by the size limits, or already present
        """
        value = value.strip() if value else ""
        if not value:
            return False

        size = byte_size(value)
        if size < self.limits.min_secret_size:
            logger.warning(
                f"Warning: Secret is too short for redaction ({size} bytes, min {self.limits.min_secret_size} bytes)"
            )
            return False
        if size >= self.limits.max_secret_size:
            logger.warning(
                f"Warning: Secret is too large for redaction ({size} bytes, max {self.limits.max_secret_size} bytes)"
            )
            return False

        with self._lock:
            if value in self._candidates:
                return False
            self._candidates[value] = SecretCandidate(value=value, source=source)
            return True

    def values(self) -> List[str]:
        with self._lock:
            return list(self._candidates)

    def candidates(self) -> List[SecretCandidate]:
        with self._lock:
            return list(self._candidates.values())

    def __contains__(self, value: object) -> bool:
        with self._lock:
            return value in self._candidates

    def __len__(self) -> int:
        with self._lock:
            return len(self._candidates)

    def __iter__(self) -> Iterator[str]:
        return iter(self.values())


def estimate_json_size(secret: str, index: int) -> int:
    """Approximate bytes `"secret_<index>": "<secret>",` adds to a JSON object."""
    key_size = len('"secret_') + len(str(index)) + len('":') + 3
    secret_size = byte_size(secret) + secret.count('"') + secret.count('\\')
    return key_size + secret_size


def chunk_secrets(secrets: List[str], max_json_size: int) -> List[List[str]]:
    """
    Split secrets into chunks whose estimated JSON size fits max_json_size.

    Greedy: a secret goes into the current chunk unless that would push it
    over the limit, in which case it starts a new one. A single secret
    larger than the limit gets a chunk of its own.
    """
    if not secrets:
        return []

    chunks = []
    current_chunk: List[str] = []
    current_size = BASE_JSON_OVERHEAD

    for secret in secrets:
        secret_json_size = estimate_json_size(secret, len(current_chunk))

        if current_chunk and current_size + secret_json_size > max_json_size:
            chunks.append(current_chunk)
            current_chunk = [secret]
            current_size = BASE_JSON_OVERHEAD + estimate_json_size(secret, 0)
        else:
            current_chunk.append(secret)
            current_size += secret_json_size

    if current_chunk:
        chunks.append(current_chunk)

    return chunks


def process_single_chunk(tool: RedactionTool, secrets: List[str], chunk_num: int, total_chunks: int) -> None:
    """
    Hand one chunk of secrets to the redactor through a temporary JSON file.

    The file is readable only by the current user and is removed however
    the call ends.

    Raises:
        RedactionError: If writing the file or the agent command fails
    """
    json_data = json.dumps(
        {f"secret_{i}": secret for i, secret in enumerate(secrets)}, ensure_ascii=False
    ).encode("utf-8", "surrogateescape")

    try:
        fd, path = tempfile.mkstemp(prefix=f"buildkite-secrets-chunk-{chunk_num}-", suffix=".json")
    except OSError as e:
        raise RedactionError(f"failed to create temporary file for chunk {chunk_num}: {e}") from e

    try:
        try:
            with os.fdopen(fd, "wb") as f:
                os.fchmod(f.fileno(), 0o600)
                f.write(json_data)
                f.flush()
                os.fsync(f.fileno())
        except OSError as e:
            raise RedactionError(f"failed to write chunk {chunk_num} to temporary file: {e}") from e

        try:
            tool.redactor_add_secrets_from_json(path)
        except RedactionError as e:
            raise RedactionError(f"buildkite-agent command failed for chunk {chunk_num}: {e}") from e
    finally:
        try:
            os.remove(path)
        except OSError:
            logger.warning(f"Warning: failed to remove temporary secrets file {path}")

    logger.info(f"Processed chunk {chunk_num}/{total_chunks} ({len(secrets)} secrets, {len(json_data)} bytes)")


def redact_secrets(tool: RedactionTool, registry: RedactionRegistry) -> bool:
    """
    Submit every registered secret to the redactor.

    Returns:
        True if at least one chunk was accepted
    """
    if not len(registry):
        return False

    version = tool.version()
    if not version:
        logger.warning("Warning: buildkite-agent not found, secrets will not be redacted")
        return False

    if not tool.supports_redactor():
        logger.warning(f"Warning: agent {version} doesn't support secret redaction")
        logger.warning("Upgrade to buildkite-agent v3.67.0 or later for automatic secret redaction")
        return False

    valid_secrets = registry.values()
    chunks = chunk_secrets(valid_secrets, registry.limits.max_chunk_size)
    logger.info(f"Processing {len(valid_secrets)} secrets in {len(chunks)} chunk(s) using JSON format")

    successful_chunks = 0
    for i, chunk in enumerate(chunks, start=1):
        try:
            process_single_chunk(tool, chunk, i, len(chunks))
        except RedactionError as e:
            logger.warning(f"Warning: failed to process chunk {i}/{len(chunks)}, some secrets may appear in logs ({e})")
        else:
            successful_chunks += 1

    if successful_chunks:
        logger.info(
            f"Successfully added {len(valid_secrets)} secrets to redactor ({successful_chunks}/{len(chunks)} chunks)"
        )
    return successful_chunks > 0
