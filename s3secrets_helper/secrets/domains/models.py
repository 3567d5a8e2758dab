"""Domain models for the secrets loader."""
import enum
from dataclasses import dataclass, field
from typing import BinaryIO, List, Optional, Protocol

# Names ending in one of these are treated as secrets.
DEFAULT_SECRET_SUFFIXES = (
    "_SECRET",
    "_SECRET_KEY",
    "_PASSWORD",
    "_TOKEN",
    "_ACCESS_KEY",
)

# Redaction limits imposed by buildkite-agent.
MIN_SECRET_SIZE = 6
MAX_SECRET_SIZE = 65536
MAX_JSON_CHUNK_SIZE = 1024 * 1024


class BlobStore(Protocol):
    """Read-only access to the secrets bucket."""

    @property
    def bucket(self) -> str: ...

    @property
    def region(self) -> str: ...

    def get(self, key: str) -> bytes: ...

    def list_suffix(self, prefix: str, suffixes: List[str]) -> List[str]: ...

    def bucket_exists(self) -> bool: ...


class SSHAgent(Protocol):
    """An ssh-agent process keys can be loaded into."""

    @property
    def pid(self) -> int: ...

    def run(self) -> bool: ...

    def add(self, key: bytes) -> None: ...

    def stdout(self) -> bytes: ...


class RedactionTool(Protocol):
    """The buildkite-agent binary, as far as log redaction is concerned."""

    def version(self) -> str: ...

    def supports_redactor(self) -> bool: ...

    def redactor_add_secrets_from_json(self, filepath: str) -> None: ...


class Outcome(enum.Enum):
    SUCCESS = "success"
    NOT_FOUND = "not_found"
    FORBIDDEN = "forbidden"
    OTHER_ERROR = "other_error"


@dataclass(frozen=True)
class FetchResult:
    """The outcome of fetching one key from the bucket."""
    bucket: str
    key: str
    data: bytes = b""
    outcome: Outcome = Outcome.SUCCESS
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.outcome is Outcome.SUCCESS

    @property
    def expected_miss(self) -> bool:
        """True for outcomes that are normal for optional keys."""
        return self.outcome in (Outcome.NOT_FOUND, Outcome.FORBIDDEN)


@dataclass(frozen=True)
class SecretCandidate:
    """A value to redact and the key it was discovered in."""
    value: str
    source: Optional[str] = None


@dataclass
class RedactionLimits:
    min_secret_size: int = MIN_SECRET_SIZE
    max_secret_size: int = MAX_SECRET_SIZE
    max_chunk_size: int = MAX_JSON_CHUNK_SIZE


@dataclass
class Config:
    """Everything a single loader run needs."""
    bucket: str
    prefix: str
    client: BlobStore
    ssh_agent: SSHAgent
    buildkite_agent: RedactionTool
    env_sink: BinaryIO
    # Path to the git credential helper, written into GIT_CONFIG_PARAMETERS
    git_credential_helper: str = ""
    # From BUILDKITE_REPO
    repo: str = ""
    # Extra suffixes used when discovering secret-files
    secret_suffixes: List[str] = field(default_factory=list)
    skip_ssh_key_not_found_warning: bool = False
    redaction: RedactionLimits = field(default_factory=RedactionLimits)
