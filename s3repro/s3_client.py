"""
S3 client wrapper

Thin layer over a boto3 S3 client that exposes the calls the reproduction
needs and translates botocore failures into StoreCallError.
"""

import logging
from typing import Any, BinaryIO, Dict, List, Optional, Union

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from s3repro.errors import StoreCallError

logger = logging.getLogger(__name__)

# Codes an S3 endpoint returns when the bucket is already there
BUCKET_EXISTS_CODES = ("BucketAlreadyOwnedByYou", "BucketAlreadyExists")
MISSING_BUCKET_CODES = ("404", "NoSuchBucket", "NotFound")


def error_code(error: ClientError) -> Optional[str]:
    """Extract the S3 error code from a ClientError response"""
    return error.response.get("Error", {}).get("Code")


class S3Client:
    """
    S3 operations against a single endpoint

    Retries are disabled so that a failing call surfaces immediately instead
    of being masked by the SDK's retry policy.
    """

    def __init__(
        self,
        endpoint_url: Optional[str] = None,
        access_key: str = "xxx",
        secret_key: str = "xxx",
        region: str = "us-east-1",
        verify_ssl: bool = False,
        path_style: bool = True,
        client: Any = None,
    ):
        self.endpoint_url = endpoint_url
        self.region = region

        if client is None:
            config = Config(
                region_name=region,
                s3={"addressing_style": "path" if path_style else "auto"},
                retries={"max_attempts": 1, "mode": "standard"},
            )
            client = boto3.client(
                "s3",
                endpoint_url=endpoint_url,
                aws_access_key_id=access_key,
                aws_secret_access_key=secret_key,
                region_name=region,
                verify=verify_ssl,
                config=config,
            )
        self.client = client

    def _call(self, operation: str, **kwargs) -> Dict[str, Any]:
        method = getattr(self.client, operation)
        try:
            return method(**kwargs)
        except ClientError as e:
            code = error_code(e)
            message = e.response.get("Error", {}).get("Message") or str(e)
            raise StoreCallError(operation, f"{code}: {message}", code=code) from e
        except BotoCoreError as e:
            raise StoreCallError(operation, str(e)) from e

    def create_bucket(self, bucket_name: str) -> bool:
        """
        Create a bucket if it does not exist

        Returns True when the bucket was created and False when it already
        existed. Any other failure raises StoreCallError.
        """
        # us-east-1 answers 200 to re-creating an owned bucket
        if self.bucket_exists(bucket_name):
            logger.debug("Bucket %s already exists", bucket_name)
            return False

        kwargs: Dict[str, Any] = {"Bucket": bucket_name}
        if self.region and self.region != "us-east-1":
            kwargs["CreateBucketConfiguration"] = {"LocationConstraint": self.region}

        try:
            self._call("create_bucket", **kwargs)
        except StoreCallError as e:
            if e.code in BUCKET_EXISTS_CODES:
                logger.debug("Bucket %s already exists", bucket_name)
                return False
            raise

        logger.info("Created bucket %s", bucket_name)
        return True

    def bucket_exists(self, bucket_name: str) -> bool:
        try:
            self._call("head_bucket", Bucket=bucket_name)
        except StoreCallError as e:
            if e.code in MISSING_BUCKET_CODES:
                return False
            raise
        return True

    def delete_bucket(self, bucket_name: str) -> None:
        self._call("delete_bucket", Bucket=bucket_name)

    def create_multipart_upload(
        self, bucket_name: str, key: str, content_type: Optional[str] = None
    ) -> str:
        """Initiate a multipart upload and return its UploadId"""
        kwargs: Dict[str, Any] = {"Bucket": bucket_name, "Key": key}
        if content_type:
            kwargs["ContentType"] = content_type
        response = self._call("create_multipart_upload", **kwargs)
        return response["UploadId"]

    def upload_part(
        self,
        bucket_name: str,
        key: str,
        part_number: int,
        upload_id: str,
        body: Union[bytes, BinaryIO],
    ) -> str:
        """Upload one part and return its ETag"""
        response = self._call(
            "upload_part",
            Bucket=bucket_name,
            Key=key,
            PartNumber=part_number,
            UploadId=upload_id,
            Body=body,
        )
        return response["ETag"]

    def complete_multipart_upload(
        self,
        bucket_name: str,
        key: str,
        upload_id: str,
        parts: List[Dict[str, Any]],
    ) -> Dict[str, Any]:
        """Complete an upload from a list of {'PartNumber', 'ETag'} dicts"""
        return self._call(
            "complete_multipart_upload",
            Bucket=bucket_name,
            Key=key,
            UploadId=upload_id,
            MultipartUpload={"Parts": parts},
        )

    def abort_multipart_upload(self, bucket_name: str, key: str, upload_id: str) -> None:
        self._call(
            "abort_multipart_upload",
            Bucket=bucket_name,
            Key=key,
            UploadId=upload_id,
        )

    def list_multipart_uploads(self, bucket_name: str) -> List[Dict[str, Any]]:
        response = self._call("list_multipart_uploads", Bucket=bucket_name)
        return response.get("Uploads", [])

    def put_object(
        self,
        bucket_name: str,
        key: str,
        body: Union[bytes, BinaryIO],
        content_type: Optional[str] = None,
    ) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {"Bucket": bucket_name, "Key": key, "Body": body}
        if content_type:
            kwargs["ContentType"] = content_type
        return self._call("put_object", **kwargs)

    def get_object(self, bucket_name: str, key: str) -> Dict[str, Any]:
        return self._call("get_object", Bucket=bucket_name, Key=key)

    def head_object(self, bucket_name: str, key: str) -> Dict[str, Any]:
        return self._call("head_object", Bucket=bucket_name, Key=key)

    def delete_object(self, bucket_name: str, key: str) -> None:
        self._call("delete_object", Bucket=bucket_name, Key=key)
