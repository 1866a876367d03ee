"""
Shared test helpers for tests that talk to S3
"""

import uuid
from typing import List, Optional

from s3repro.errors import StoreCallError
from s3repro.payload import generate_random_data


class TestFixture:
    """
    Tracks buckets created by a test and removes them afterwards
    """

    # Not a test class, despite the name
    __test__ = False

    def __init__(self, s3_client, config):
        self.s3_client = s3_client
        self.config = config
        self.buckets: List[str] = []

    def generate_bucket_name(self, prefix: str = "bucket") -> str:
        name = f"{self.config['s3_bucket_prefix']}-{prefix}-{uuid.uuid4().hex[:8]}"
        self.buckets.append(name)
        return name

    def generate_random_data(self, size: int, seed: Optional[int] = None) -> bytes:
        return generate_random_data(size, seed)

    def cleanup(self) -> None:
        """Abort in-progress uploads, delete objects and buckets"""
        client = self.s3_client.client
        for bucket in self.buckets:
            try:
                for upload in self.s3_client.list_multipart_uploads(bucket):
                    self.s3_client.abort_multipart_upload(
                        bucket, upload["Key"], upload["UploadId"]
                    )
                response = client.list_objects_v2(Bucket=bucket)
                for obj in response.get("Contents", []):
                    self.s3_client.delete_object(bucket, obj["Key"])
                self.s3_client.delete_bucket(bucket)
            except (StoreCallError, client.exceptions.NoSuchBucket):
                pass
