"""
Pytest configuration and fixtures for s3repro tests

Without S3_ENDPOINT the s3_client fixture talks to an in-process moto mock.
Set S3_ENDPOINT (e.g. http://localhost:4566) to run against a live emulator.
"""

import os

import pytest
from moto import mock_aws

from s3repro.s3_client import S3Client
from tests.common.fake_store import FakeStore


@pytest.fixture(scope="session")
def config():
    """
    Test configuration fixture

    Returns configuration for S3 testing
    """
    return {
        "s3_endpoint": os.getenv("S3_ENDPOINT") or None,
        "s3_access_key": os.getenv("S3_ACCESS_KEY", "xxx"),
        "s3_secret_key": os.getenv("S3_SECRET_KEY", "xxx"),
        "s3_region": os.getenv("S3_REGION", "us-east-1"),
        "s3_bucket_prefix": os.getenv("S3_BUCKET_PREFIX", "s3repro-test"),
        "verify_ssl": os.getenv("S3_VERIFY_SSL", "false").lower() == "true",
        "emulator_image": os.getenv("S3REPRO_TEST_IMAGE", "localstack/localstack:2.2.0"),
    }


@pytest.fixture(scope="function")
def s3_client(config):
    """
    S3 client fixture

    Creates an S3Client for the configured endpoint, or one backed by moto
    when no endpoint is configured
    """
    if config["s3_endpoint"]:
        yield S3Client(
            endpoint_url=config["s3_endpoint"],
            access_key=config["s3_access_key"],
            secret_key=config["s3_secret_key"],
            region=config["s3_region"],
            verify_ssl=config["verify_ssl"],
        )
        return

    with mock_aws():
        yield S3Client(
            access_key="testing",
            secret_key="testing",
            region=config["s3_region"],
        )


@pytest.fixture
def fake_store():
    """In-memory store with failure injection"""
    return FakeStore()
