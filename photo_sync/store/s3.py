"""
Read-only access to the S3-compatible object store.

The engine only ever lists keys and opens byte streams; it never writes,
renames or deletes objects.
"""
import logging
import time
from typing import Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from ..config import SyncConfig
from ..exceptions import StoreError
from ..models import ListPage, StoreObject


def build_s3_client(cfg: SyncConfig):
    """Client with bounded timeouts and retries so a stalled call cannot hang a scan."""
    boto_cfg = BotoConfig(
        connect_timeout=10,
        read_timeout=60,
        retries={"max_attempts": 3, "mode": "standard"},
    )
    kwargs = {"config": boto_cfg}
    if cfg.endpoint_url:
        kwargs["endpoint_url"] = cfg.endpoint_url
    if cfg.region:
        kwargs["region_name"] = cfg.region
    if cfg.access_key and cfg.secret_key:
        kwargs["aws_access_key_id"] = cfg.access_key
        kwargs["aws_secret_access_key"] = cfg.secret_key
    else:
        logging.info("No explicit store credentials set; relying on the boto3 credential chain")
    return boto3.client("s3", **kwargs)


class S3ObjectStore:
    def __init__(self, client, bucket: str):
        self.client = client
        self.bucket = bucket

    @classmethod
    def from_config(cls, cfg: SyncConfig) -> "S3ObjectStore":
        return cls(build_s3_client(cfg), cfg.bucket)

    def list(self, prefix: str = "", continuation_token: Optional[str] = None,
             page_size: int = 1000) -> ListPage:
        """Returns one page of objects under `prefix`."""
        params = {"Bucket": self.bucket, "MaxKeys": page_size}
        if prefix:
            params["Prefix"] = prefix
        if continuation_token:
            params["ContinuationToken"] = continuation_token

        desc = f"{self.bucket}/{prefix}" if prefix else f"{self.bucket} (root)"
        started = time.monotonic()
        try:
            response = self.client.list_objects_v2(**params)
        except (ClientError, BotoCoreError) as e:
            logging.error(f"Failed to list objects from {desc}: {e}")
            raise StoreError(f"Failed to list objects from {desc}: {e}") from e

        objects = [
            StoreObject(
                key=obj["Key"],
                size=obj.get("Size", 0),
                last_modified=obj["LastModified"],
                etag=obj.get("ETag", "").replace('"', ""),
            )
            for obj in response.get("Contents", [])
        ]
        is_truncated = bool(response.get("IsTruncated"))
        next_token = response.get("NextContinuationToken") if is_truncated else None

        logging.debug(
            f"Listed {len(objects)} objects from {desc} in {time.monotonic() - started:.2f}s "
            f"(more={is_truncated})"
        )
        return ListPage(objects=objects, next_token=next_token, is_truncated=is_truncated)

    def open_stream(self, key: str):
        """
        Opens the object body. The caller owns the returned stream and must
        close it; reading is lazy, so closing early avoids the rest of the download.
        """
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=key)
        except (ClientError, BotoCoreError) as e:
            raise StoreError(f"Failed to open stream for {key}: {e}") from e
        logging.debug(f"Opened stream for {key} ({response.get('ContentLength')} bytes)")
        return response["Body"]
