"""CLI entrypoint for s3secrets-helper."""
import sys
import argparse
import logging

from .validators import validate_bucket_name, validate_object_key

VERSION = "2.0.0"

# Configure logging to stderr; stdout may be the env sink
logging.basicConfig(
    level=logging.INFO,
    format="%(message)s",
    stream=sys.stderr
)
logger = logging.getLogger(__name__)


def cmd_version(args):
    """Show version information."""
    print(f"s3secrets-helper {VERSION}")


def cmd_load(args):
    """Load secrets from the configured bucket into the build environment."""
    from s3secrets_helper.secrets.domains.buildkite_agent import BuildkiteAgent
    from s3secrets_helper.secrets.domains.config_loader import load_settings, validate_settings
    from s3secrets_helper.secrets.domains.errors import SinkWriteError
    from s3secrets_helper.secrets.domains.models import Config
    from s3secrets_helper.secrets.domains.s3_client import S3Client
    from s3secrets_helper.secrets.domains.ssh_agent import Agent
    from s3secrets_helper.secrets.workflows.secret_operations import run

    settings = load_settings(config_path=args.config)
    if not settings.bucket:
        logger.debug("No secrets bucket configured, nothing to do")
        return

    validate_bucket_name(settings.bucket)
    validate_settings(settings)

    client = S3Client.new(settings.bucket, settings.region)

    if settings.env_sink_path:
        try:
            env_sink = open(settings.env_sink_path, "ab")
        except OSError as e:
            raise SinkWriteError(f"failed to open env sink {settings.env_sink_path}: {e}") from e
    else:
        env_sink = sys.stdout.buffer
    try:
        run(Config(
            bucket=settings.bucket,
            prefix=settings.prefix,
            client=client,
            ssh_agent=Agent(),
            buildkite_agent=BuildkiteAgent(),
            env_sink=env_sink,
            git_credential_helper=settings.credential_helper,
            repo=settings.repo,
            secret_suffixes=settings.secret_suffixes,
            skip_ssh_key_not_found_warning=settings.skip_ssh_key_not_found_warning,
            redaction=settings.redaction,
        ))
        try:
            env_sink.flush()
        except OSError as e:
            raise SinkWriteError(f"failed to flush env sink: {e}") from e
    finally:
        if env_sink is not sys.stdout.buffer:
            env_sink.close()


def cmd_git_credential(args):
    """Answer a git credential request from a git-credentials file in S3."""
    from s3secrets_helper.secrets.domains import git_credentials
    from s3secrets_helper.secrets.domains.errors import ForbiddenError, NotFoundError
    from s3secrets_helper.secrets.domains.s3_client import S3Client

    validate_bucket_name(args.bucket)
    validate_object_key(args.key)

    # git also calls helpers with "store" and "erase"; this helper is read-only
    if args.action != "get":
        return

    request = git_credentials.parse_request(sys.stdin)

    client = S3Client(args.bucket, args.region)
    try:
        data = client.get(args.key)
    except (NotFoundError, ForbiddenError) as e:
        print(f"Error: {args.bucket}/{args.key} is not readable ({type(e).__name__})", file=sys.stderr)
        sys.exit(1)

    credential = git_credentials.find_credential(
        git_credentials.parse_store(data.decode("utf-8", errors="replace")), request
    )
    if credential is None:
        logger.debug(f"No credential in {args.bucket}/{args.key} matches {request.get('host')}")
        return
    sys.stdout.write(git_credentials.format_response(credential))


def _add_git_credential_arguments(parser):
    parser.add_argument("bucket", help="Bucket holding the git-credentials file")
    parser.add_argument("region", help="Bucket region")
    parser.add_argument("key", help="Key of the git-credentials file")
    parser.add_argument("action", nargs="?", default="get", help="get, store or erase")


def git_credential_main(argv=None):
    """
    Entrypoint for the git-credential-s3-secrets executable.

    Point BUILDKITE_PLUGIN_S3_SECRETS_CREDHELPER at this executable's path;
    git then runs it as `<path> <bucket> <region> <key> <action>`.
    """
    from s3secrets_helper.secrets.domains.errors import S3SecretsError

    parser = argparse.ArgumentParser(
        prog="git-credential-s3-secrets",
        description="Git credential helper backed by a git-credentials file in S3",
    )
    _add_git_credential_arguments(parser)
    args = parser.parse_args(argv)

    try:
        cmd_git_credential(args)
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        sys.exit(1)
    except S3SecretsError as e:
        print(f"fatal error: {e}", file=sys.stderr)
        sys.exit(1)


def main():
    """Main CLI entrypoint.

    Exit codes:
        0 - Success
        1 - Runtime errors (bucket not found, env sink not writable, ssh-agent failure, etc.)
        2 - Usage errors (invalid arguments, missing configuration, etc.)
    """
    from s3secrets_helper.secrets.domains.errors import ConfigError, S3SecretsError

    parser = argparse.ArgumentParser(
        prog="s3secrets-helper",
        description="Load build secrets from an S3 bucket into ssh-agent, the environment and git",
        epilog="""
Exit codes:
  0 - Success
  1 - Runtime error (bucket not found, env sink not writable, ssh-agent failure, etc.)
  2 - Usage error (invalid arguments, missing configuration, etc.)

Environment variables:
  BUILDKITE_PLUGIN_S3_SECRETS_BUCKET         - Bucket to load secrets from (nothing is done if unset)
  BUILDKITE_PLUGIN_S3_SECRETS_BUCKET_PREFIX  - Key prefix (defaults to BUILDKITE_PIPELINE_SLUG)
  BUILDKITE_PLUGIN_S3_SECRETS_REGION         - Bucket region (discovered if unset)
  BUILDKITE_PLUGIN_S3_SECRETS_CREDHELPER     - Path to the git-credential-s3-secrets executable
  BUILDKITE_PLUGIN_S3_SECRETS_ENV_SINK       - File to append environment to (defaults to stdout)
  BUILDKITE_PLUGIN_S3_SECRETS_CONFIG         - Optional YAML config file
        """,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="Only log warnings and errors"
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Log debug output"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # version command
    _version_parser = subparsers.add_parser(
        "version",
        help="Show version information",
        description="Display the current version of s3secrets-helper"
    )

    # load command
    load_parser = subparsers.add_parser(
        "load",
        help="Load secrets into the build environment (default)",
        description="""
Download SSH keys, environment files, git credentials and secret-files from
the configured bucket. Environment is written to stdout (or the env sink
file) for the calling shell to evaluate; progress is logged to stderr.
        """
    )
    load_parser.add_argument(
        "--config",
        help="YAML config file (overrides BUILDKITE_PLUGIN_S3_SECRETS_CONFIG)"
    )

    # git-credential command
    git_parser = subparsers.add_parser(
        "git-credential",
        help="Git credential helper backed by a git-credentials file in S3",
        description="""
Git credential helper. The same helper is installed as the standalone
git-credential-s3-secrets executable, which is what
BUILDKITE_PLUGIN_S3_SECRETS_CREDHELPER should point at. 'load' configures it
through GIT_CONFIG_PARAMETERS as:

  credential.helper=<helper> <bucket> <region> <key>

For 'get', reads the request from stdin and prints the matching credential.
'store' and 'erase' are ignored.
        """
    )
    _add_git_credential_arguments(git_parser)

    args = parser.parse_args()

    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)
    elif args.quiet:
        logging.getLogger().setLevel(logging.WARNING)

    if not args.command:
        args.command = "load"
        args.config = None

    try:
        if args.command == "version":
            cmd_version(args)
        elif args.command == "load":
            cmd_load(args)
        elif args.command == "git-credential":
            cmd_git_credential(args)
        else:
            parser.print_help()
            sys.exit(2)
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        sys.exit(1)
    except ConfigError as e:
        print(f"fatal error: {e}", file=sys.stderr)
        sys.exit(2)
    except S3SecretsError as e:
        print(f"fatal error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
