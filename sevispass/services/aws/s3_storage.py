"""
S3 image storage for document and selfie photos.
"""
import logging
from typing import Optional

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError

from sevispass.config import AWS_CONFIG
from sevispass.services.aws.rekognition_client import call_aws, client_config
from sevispass.services.identity.errors import ExternalServiceError
from sevispass.services.storage.base import ImageStorage

logger = logging.getLogger(__name__)

SERVICE = "s3"
NOT_FOUND_CODES = ("404", "NoSuchKey", "NotFound")
# S3 caps presigned URLs at 7 days
MAX_PRESIGN_EXPIRY = 604800


def s3_client_config() -> Config:
    """Shared timeouts with SigV4 signing."""
    return client_config().merge(Config(signature_version="s3v4"))


class S3ImageStorage(ImageStorage):

    def __init__(self, bucket: Optional[str] = None, client=None):
        self.bucket = (bucket or AWS_CONFIG["s3_bucket"] or "").strip()
        if not self.bucket:
            raise ValueError("S3_BUCKET is not set")
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = boto3.client("s3", config=s3_client_config())
        return self._client

    def put_image(self, key: str, data: bytes, content_type: str = "image/jpeg") -> str:
        try:
            call_aws(
                SERVICE, "put_object", self.client.put_object,
                Bucket=self.bucket, Key=key, Body=data, ContentType=content_type,
            )
        except ClientError as e:
            logger.error(f"S3 upload of {key} failed: {e}")
            raise ExternalServiceError(SERVICE, "put_object", str(e)) from e
        logger.info(f"Stored image {key}")
        return key

    def get_image(self, key: str) -> bytes:
        """
        Raises:
            KeyError: object does not exist
        """
        try:
            response = call_aws(SERVICE, "get_object", self.client.get_object, Bucket=self.bucket, Key=key)
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code")
            if code in NOT_FOUND_CODES:
                raise KeyError(key) from e
            logger.error(f"S3 download of {key} failed: {e}")
            raise ExternalServiceError(SERVICE, "get_object", str(e)) from e
        return response["Body"].read()

    def presigned_url(self, key: str, expires_in: Optional[int] = None) -> Optional[str]:
        """
        Temporary GET URL, or None when the object is missing.

        Non-positive expiries fall back to the configured default; longer
        ones are clamped to the 7 day S3 limit.
        """
        expires = AWS_CONFIG["s3_presign_expiry"] if expires_in is None else expires_in
        if expires <= 0:
            expires = AWS_CONFIG["s3_presign_expiry"]
        expires = min(expires, MAX_PRESIGN_EXPIRY)

        try:
            call_aws(SERVICE, "head_object", self.client.head_object, Bucket=self.bucket, Key=key)
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code")
            if code in NOT_FOUND_CODES:
                return None
            raise ExternalServiceError(SERVICE, "head_object", str(e)) from e

        try:
            return self.client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.bucket, "Key": key},
                ExpiresIn=expires,
            )
        except ClientError as e:
            raise ExternalServiceError(SERVICE, "presign", str(e)) from e
