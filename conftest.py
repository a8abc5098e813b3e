"""
Pytest configuration and fixtures for sibling benchmark tests
"""

import os

import pytest

from siblingbench.config import RunConfig, S3Settings, StoreSettings
from siblingbench.s3_client import S3Client
from tests.common.fakes import FakeClusterController, FakeStatsCollector, FakeStore


@pytest.fixture(scope="session")
def config():
    """
    Test configuration fixture

    Returns configuration for live cluster testing
    """
    nodes = [n.strip() for n in os.getenv("SIBLING_NODES", "").split(",") if n.strip()]
    return {
        "s3_endpoint": os.getenv("S3_ENDPOINT", "http://localhost:9000"),
        "s3_access_key": os.getenv("S3_ACCESS_KEY", "minioadmin"),
        "s3_secret_key": os.getenv("S3_SECRET_KEY", "minioadmin"),
        "s3_region": os.getenv("S3_REGION", "us-east-1"),
        "verify_ssl": os.getenv("S3_VERIFY_SSL", "false").lower() == "true",
        "nodes": nodes,
        "stats_port": int(os.getenv("SIBLING_STATS_PORT", "8098")),
        "config_file": os.getenv("SIBLING_CONFIG"),
    }


@pytest.fixture(scope="function")
def s3_client(config):
    """
    S3 client fixture

    Creates an S3Client sized for the default write concurrency
    """
    settings = S3Settings(
        endpoint_url=config["s3_endpoint"],
        access_key=config["s3_access_key"],
        secret_key=config["s3_secret_key"],
        region=config["s3_region"],
        verify_ssl=config["verify_ssl"],
    )
    yield S3Client.from_settings(settings, StoreSettings.for_run(RunConfig()))


@pytest.fixture
def fast_run_config():
    """RunConfig with intervals short enough for unit tests"""
    return RunConfig(
        write_concurrency=2,
        duration_seconds=0.2,
        writer_interval=0.01,
        reader_interval=0.02,
        sampler_interval=0.02,
        settle_seconds=0,
        unreachable_timeout=1,
        payload_size=16,
    )


@pytest.fixture
def fake_store():
    return FakeStore()


@pytest.fixture
def fake_collector():
    return FakeStatsCollector()


@pytest.fixture
def fake_controller():
    return FakeClusterController()


@pytest.fixture
def nodes():
    return ["dev1@127.0.0.1", "dev2@127.0.0.2", "dev3@127.0.0.3", "dev4@127.0.0.4"]
