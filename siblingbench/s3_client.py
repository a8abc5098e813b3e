"""
S3 client wrapper used by the benchmark actors

Thin layer over a boto3 low-level client. Errors from botocore are not
caught here: a failing request is a signal for the benchmark.
"""

from typing import Any, Dict, List, Optional

import boto3
from botocore.config import Config

from siblingbench.config import S3Settings, StoreSettings


class S3Client:
    """S3 client shared by every actor of a run

    The underlying boto3 client is thread-safe; its connection pool is sized
    from the store settings so concurrent writers do not starve each other.
    """

    def __init__(
        self,
        endpoint_url: str,
        access_key: str,
        secret_key: str,
        region: str = "us-east-1",
        use_ssl: bool = False,
        verify_ssl: bool = False,
        max_pool_connections: int = 10,
        client: Optional[Any] = None,
    ):
        self.endpoint_url = endpoint_url
        if client is None:
            client = boto3.client(
                "s3",
                endpoint_url=endpoint_url,
                aws_access_key_id=access_key,
                aws_secret_access_key=secret_key,
                region_name=region,
                use_ssl=use_ssl,
                verify=verify_ssl,
                config=Config(
                    max_pool_connections=max_pool_connections,
                    s3={"addressing_style": "path"},
                    retries={"max_attempts": 1, "mode": "standard"},
                ),
            )
        self.client = client

    @classmethod
    def from_settings(cls, s3: S3Settings, store: StoreSettings) -> "S3Client":
        return cls(
            endpoint_url=s3.endpoint_url,
            access_key=s3.access_key,
            secret_key=s3.secret_key,
            region=s3.region,
            use_ssl=s3.endpoint_url.startswith("https"),
            verify_ssl=s3.verify_ssl,
            max_pool_connections=store.request_pool + store.bucket_list_pool,
        )

    def list_buckets(self) -> List[str]:
        response = self.client.list_buckets()
        return [b["Name"] for b in response.get("Buckets", [])]

    def create_bucket(self, bucket_name: str) -> Dict[str, Any]:
        return self.client.create_bucket(Bucket=bucket_name)

    def delete_bucket(self, bucket_name: str) -> Dict[str, Any]:
        return self.client.delete_bucket(Bucket=bucket_name)

    def put_object(
        self, bucket_name: str, key: str, data: bytes, **kwargs
    ) -> Dict[str, Any]:
        return self.client.put_object(Bucket=bucket_name, Key=key, Body=data, **kwargs)

    def get_object(self, bucket_name: str, key: str, **kwargs) -> Dict[str, Any]:
        return self.client.get_object(Bucket=bucket_name, Key=key, **kwargs)

    def get_object_body(self, bucket_name: str, key: str) -> bytes:
        response = self.get_object(bucket_name, key)
        return response["Body"].read()

    def delete_object(self, bucket_name: str, key: str, **kwargs) -> Dict[str, Any]:
        return self.client.delete_object(Bucket=bucket_name, Key=key, **kwargs)
