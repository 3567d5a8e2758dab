"""Input validation for CLI arguments."""
import re
import sys

_BUCKET_RE = re.compile(r'^[a-z0-9][a-z0-9.-]{1,61}[a-z0-9]$')
_IP_RE = re.compile(r'^\d+\.\d+\.\d+\.\d+$')


def validate_bucket_name(name: str) -> None:
    """
    Validate a bucket name against the S3 naming rules.

    S3 bucket names are 3-63 characters of lowercase letters, numbers,
    dots and hyphens, starting and ending with a letter or number.

    Args:
        name: Bucket name to validate

    Raises:
        SystemExit with code 2 if validation fails
    """
    if not _BUCKET_RE.match(name) or ".." in name or _IP_RE.match(name):
        print(f"Error: Invalid S3 bucket name '{name}'", file=sys.stderr)
        print("\nBucket names must be 3-63 characters long and may contain:", file=sys.stderr)
        print("  lowercase letters, numbers, dots (.) and hyphens (-)", file=sys.stderr)
        print("They must start and end with a letter or number, and must not look like an IP address.", file=sys.stderr)
        sys.exit(2)


def validate_object_key(key: str) -> None:
    """
    Validate an S3 object key is usable.

    Raises:
        SystemExit with code 2 if validation fails
    """
    if not key or not key.strip():
        print("Error: Object key cannot be empty", file=sys.stderr)
        sys.exit(2)
    if len(key.encode("utf-8")) > 1024:
        print("Error: Object key is longer than 1024 bytes", file=sys.stderr)
        sys.exit(2)
