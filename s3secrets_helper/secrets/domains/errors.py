"""Exceptions raised across the secrets loader."""


class S3SecretsError(Exception):
    """Base class for all loader errors."""
    pass


class NotFoundError(S3SecretsError):
    """The requested object does not exist."""
    pass


class ForbiddenError(S3SecretsError):
    """Access to the requested object was denied."""
    pass


class GatewayError(S3SecretsError):
    """Any other failure talking to the blob store."""
    pass


class BucketNotFoundError(S3SecretsError):
    """The secrets bucket does not exist or cannot be reached."""
    pass


class SinkWriteError(S3SecretsError):
    """Writing to the environment sink failed."""
    pass


class AgentError(S3SecretsError):
    """ssh-agent could not be started or a key could not be added."""
    pass


class RedactionError(S3SecretsError):
    """The external redaction tool rejected a batch."""
    pass


class ConfigError(S3SecretsError):
    """Configuration error exception."""
    pass
