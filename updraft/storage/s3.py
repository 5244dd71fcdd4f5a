"""S3-compatible object storage and CloudFront invalidation (boto3).

boto3 clients are blocking, so every call runs in a worker thread via
asyncio.to_thread. Clients are created once per backend instance and are
safe to share across threads.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

import boto3
from botocore.exceptions import ClientError

from updraft.storage.base import CdnInvalidator, ObjectNotFoundError, ObjectStorage

logger = logging.getLogger(__name__)

_NOT_FOUND_CODES = frozenset({"NoSuchKey", "404", "NotFound"})


def _is_not_found(exc: ClientError) -> bool:
    code = str(exc.response.get("Error", {}).get("Code", ""))
    return code in _NOT_FOUND_CODES


class S3Storage(ObjectStorage):
    """Object storage backed by one S3 (or S3-compatible) bucket."""

    def __init__(
        self,
        bucket: str,
        region: str | None = None,
        endpoint_url: str | None = None,
        client: Any = None,
    ) -> None:
        if not bucket:
            raise ValueError("S3 bucket name is required")
        self.bucket = bucket
        self._client = client or boto3.client(
            "s3", region_name=region, endpoint_url=endpoint_url
        )

    def _list_sync(self, prefix: str) -> list[str]:
        keys: list[str] = []
        paginator = self._client.get_paginator("list_objects_v2")
        for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
            for item in page.get("Contents", []):
                key = item.get("Key")
                if key:
                    keys.append(key)
        return keys

    def _read_sync(self, key: str) -> bytes:
        try:
            response = self._client.get_object(Bucket=self.bucket, Key=key)
        except ClientError as exc:
            if _is_not_found(exc):
                raise ObjectNotFoundError(key) from None
            raise
        return response["Body"].read()

    def _write_sync(
        self,
        key: str,
        data: bytes,
        content_type: str | None,
        cache_control: str | None,
    ) -> None:
        params: dict[str, Any] = {"Bucket": self.bucket, "Key": key, "Body": data}
        if content_type:
            params["ContentType"] = content_type
        if cache_control:
            params["CacheControl"] = cache_control
        self._client.put_object(**params)

    async def list_objects(self, prefix: str) -> list[str]:
        return await asyncio.to_thread(self._list_sync, prefix)

    async def read_object(self, key: str) -> bytes:
        return await asyncio.to_thread(self._read_sync, key)

    async def write_object(
        self,
        key: str,
        data: bytes,
        content_type: str | None = None,
        cache_control: str | None = None,
    ) -> None:
        await asyncio.to_thread(self._write_sync, key, data, content_type, cache_control)

    async def delete_object(self, key: str) -> None:
        await asyncio.to_thread(self._client.delete_object, Bucket=self.bucket, Key=key)


class CloudFrontInvalidator(CdnInvalidator):
    """Issues one CloudFront invalidation batch per call."""

    def __init__(self, distribution_id: str, client: Any = None) -> None:
        if not distribution_id:
            raise ValueError("CloudFront distribution id is required")
        self.distribution_id = distribution_id
        self._client = client or boto3.client("cloudfront")

    def _invalidate_sync(self, paths: list[str]) -> None:
        self._client.create_invalidation(
            DistributionId=self.distribution_id,
            InvalidationBatch={
                "Paths": {"Quantity": len(paths), "Items": paths},
                "CallerReference": f"updraft-{time.time_ns()}",
            },
        )

    async def invalidate(self, paths: list[str]) -> None:
        if not paths:
            return
        logger.info(
            "Invalidating %d path(s) on distribution %s", len(paths), self.distribution_id
        )
        await asyncio.to_thread(self._invalidate_sync, list(paths))
