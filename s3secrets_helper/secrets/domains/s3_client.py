"""S3 client wrapper used as the loader's blob store."""
import os
import logging
from typing import List, Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError
from botocore.utils import InstanceMetadataRegionFetcher

from .errors import ForbiddenError, GatewayError, NotFoundError

logger = logging.getLogger(__name__)

DEFAULT_REGION = "us-east-1"
REGION_ENV_VAR = "BUILDKITE_PLUGIN_S3_SECRETS_REGION"

# Applied to every S3 call so one slow request cannot hang the build.
_BOTO_CONFIG = BotoConfig(
    connect_timeout=10,
    read_timeout=30,
    retries={"max_attempts": 3, "mode": "standard"},
)

_NOT_FOUND_CODES = ("NoSuchKey", "NotFound", "404")
_FORBIDDEN_CODES = ("AccessDenied", "Forbidden", "403")


def _error_code(error: ClientError) -> str:
    return str(error.response.get("Error", {}).get("Code", ""))


def get_current_region() -> Optional[str]:
    """
    Work out the region the build is running in.

    Returns:
        AWS_DEFAULT_REGION if set, otherwise the EC2 instance metadata region,
        or None when neither is available
    """
    region = os.getenv("AWS_DEFAULT_REGION")
    if region:
        return region

    try:
        region = InstanceMetadataRegionFetcher(timeout=1, num_attempts=1).retrieve_region()
    except Exception as e:
        logger.debug(f"Instance metadata region lookup failed: {e}")
        return None
    return region or None


class S3Client:
    """Read-only S3 access scoped to a single bucket."""

    def __init__(self, bucket: str, region: str, client=None):
        self._bucket = bucket
        self._region = region
        self._client = client

    @classmethod
    def new(cls, bucket: str, region_hint: str = "") -> "S3Client":
        """
        Build a client for a bucket, discovering the bucket's region.

        Args:
            bucket: Bucket name
            region_hint: Region to use unconditionally, if known

        Returns:
            S3Client bound to the bucket's region
        """
        if region_hint:
            return cls(bucket, region_hint)

        region = get_current_region() or DEFAULT_REGION
        logger.info(f"Discovered current region as {region!r}")

        lookup = boto3.client("s3", region_name=region, config=_BOTO_CONFIG)
        bucket_region = None
        try:
            response = lookup.head_bucket(Bucket=bucket)
            bucket_region = response["ResponseMetadata"]["HTTPHeaders"].get("x-amz-bucket-region")
        except ClientError as e:
            # HeadBucket reports the region even when it refuses the request.
            bucket_region = e.response.get("ResponseMetadata", {}).get("HTTPHeaders", {}).get("x-amz-bucket-region")
            if not bucket_region:
                logger.debug(f"HeadBucket {bucket} failed: {e}")
        except BotoCoreError as e:
            logger.debug(f"HeadBucket {bucket} failed: {e}")

        if bucket_region:
            logger.info(f"Discovered bucket region as {bucket_region!r}")
            region = bucket_region
        else:
            logger.info(
                f"Could not discover region for bucket {bucket!r}. Using the {region!r} region as a fallback, "
                f"if this is not correct configure a bucket region using the {REGION_ENV_VAR} environment variable."
            )
        return cls(bucket, region, client=lookup if region == lookup.meta.region_name else None)

    @property
    def client(self):
        """Lazy-initialize the boto3 client."""
        if self._client is None:
            self._client = boto3.client("s3", region_name=self._region, config=_BOTO_CONFIG)
        return self._client

    @property
    def bucket(self) -> str:
        return self._bucket

    @property
    def region(self) -> str:
        return self._region

    def get(self, key: str) -> bytes:
        """
        Download an object fully into memory.

        Raises:
            NotFoundError: The key does not exist
            ForbiddenError: Access to the key was denied
            GatewayError: Any other failure
        """
        try:
            response = self.client.get_object(Bucket=self._bucket, Key=key)
            body = response["Body"]
            try:
                return body.read()
            finally:
                body.close()
        except ClientError as e:
            code = _error_code(e)
            if code in _NOT_FOUND_CODES:
                raise NotFoundError(key) from e
            if code in _FORBIDDEN_CODES:
                raise ForbiddenError(key) from e
            raise GatewayError(
                f"Could not GetObject ({key}) in bucket ({self._bucket}). "
                f"Ensure your IAM Identity has s3:GetObject permission for this key and bucket. ({e})"
            ) from e
        except BotoCoreError as e:
            raise GatewayError(f"Could not GetObject ({key}) in bucket ({self._bucket}). ({e})") from e

    def list_suffix(self, prefix: str, suffixes: List[str]) -> List[str]:
        """Return keys under prefix that end with any of the suffixes, in listing order."""
        keys = []
        try:
            paginator = self.client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self._bucket, Prefix=prefix):
                for obj in page.get("Contents", []) or []:
                    key = obj.get("Key", "")
                    if key and key.endswith(tuple(suffixes)):
                        keys.append(key)
        except (ClientError, BotoCoreError) as e:
            raise GatewayError(
                f"Could not ListObjectsV2 ({prefix}) in bucket ({self._bucket}). "
                f"Ensure your IAM Identity has s3:ListBucket permission for this bucket. ({e})"
            ) from e
        return keys

    def bucket_exists(self) -> bool:
        """
        Check the bucket exists.

        Returns:
            True on 200, False on 404 or 403

        Raises:
            GatewayError: For any other failure
        """
        try:
            self.client.head_bucket(Bucket=self._bucket)
            return True
        except ClientError as e:
            if _error_code(e) in _NOT_FOUND_CODES + _FORBIDDEN_CODES + ("NoSuchBucket",):
                return False
            raise GatewayError(
                f"Could not HeadBucket ({self._bucket}). "
                f"Ensure your IAM Identity has s3:ListBucket permission for this bucket. ({e})"
            ) from e
        except BotoCoreError as e:
            raise GatewayError(f"Could not HeadBucket ({self._bucket}). ({e})") from e
