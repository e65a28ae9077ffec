# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
S3 blob store (aiobotocore).

Writers buffer up to one part in memory and switch to a multipart upload
once the archive outgrows it. S3 only lists an object after put_object or
complete_multipart_upload succeeds, and an aborted multipart upload leaves
no object behind. Both are conditional on the key being absent, so an
existing backup is never overwritten.
"""

from contextlib import AsyncExitStack
from typing import Any, List

import structlog
from botocore.exceptions import ClientError

from appsnap.exceptions import BlobExistsError, BlobNotFoundError, BlobStoreError
from appsnap.storage.base import BlobObject, BlobReader, BlobWriter

logger = structlog.get_logger()

# S3 minimum part size is 5 MiB (except for the last part)
DEFAULT_PART_SIZE = 8 * 1024 * 1024

_NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound"}
_KEY_TAKEN_CODES = {"412", "PreconditionFailed", "ConditionalRequestConflict"}


def _is_not_found(error: ClientError) -> bool:
    return str(error.response.get("Error", {}).get("Code")) in _NOT_FOUND_CODES


def _is_key_taken(error: ClientError) -> bool:
    return str(error.response.get("Error", {}).get("Code")) in _KEY_TAKEN_CODES


class S3BlobWriter(BlobWriter):
    def __init__(
        self,
        key: str,
        s3_key: str,
        bucket: str,
        client: Any,
        exit_stack: AsyncExitStack,
        part_size: int = DEFAULT_PART_SIZE,
    ):
        self.key = key
        self._s3_key = s3_key
        self._bucket = bucket
        self._client = client
        self._exit_stack = exit_stack
        self._part_size = part_size
        self._buffer = bytearray()
        self._upload_id: str | None = None
        self._parts: List[dict] = []
        self._done = False

    async def _upload_part(self, data: bytes) -> None:
        if self._upload_id is None:
            response = await self._client.create_multipart_upload(
                Bucket=self._bucket, Key=self._s3_key
            )
            self._upload_id = response["UploadId"]

        part_number = len(self._parts) + 1
        response = await self._client.upload_part(
            Bucket=self._bucket,
            Key=self._s3_key,
            UploadId=self._upload_id,
            PartNumber=part_number,
            Body=data,
        )
        self._parts.append({"ETag": response["ETag"], "PartNumber": part_number})

    async def write(self, data: bytes) -> None:
        if self._done:
            raise BlobStoreError("Writer already closed", details={"key": self.key})
        self._buffer.extend(data)
        try:
            while len(self._buffer) >= self._part_size:
                part = bytes(self._buffer[: self._part_size])
                del self._buffer[: self._part_size]
                await self._upload_part(part)
        except ClientError as e:
            await self.abort()
            raise BlobStoreError(f"Failed to upload part: {e}", details={"key": self.key}) from e

    async def close(self) -> None:
        if self._done:
            return
        try:
            if self._upload_id is None:
                await self._client.put_object(
                    Bucket=self._bucket,
                    Key=self._s3_key,
                    Body=bytes(self._buffer),
                    IfNoneMatch="*",
                )
            else:
                if self._buffer:
                    await self._upload_part(bytes(self._buffer))
                await self._client.complete_multipart_upload(
                    Bucket=self._bucket,
                    Key=self._s3_key,
                    UploadId=self._upload_id,
                    MultipartUpload={"Parts": self._parts},
                    IfNoneMatch="*",
                )
        except Exception as e:
            await self.abort()
            if isinstance(e, ClientError) and _is_key_taken(e):
                raise BlobExistsError(
                    f"Object already exists: {self.key}",
                    details={"key": self.key},
                ) from e
            raise BlobStoreError(
                f"Failed to finalize object: {e}",
                details={"key": self.key},
            ) from e

        self._done = True
        self._buffer.clear()
        await self._exit_stack.aclose()

        logger.debug("s3_blob_written", key=self.key, parts=len(self._parts))

    async def abort(self) -> None:
        if self._done:
            return
        self._done = True
        self._buffer.clear()
        try:
            if self._upload_id is not None:
                await self._client.abort_multipart_upload(
                    Bucket=self._bucket,
                    Key=self._s3_key,
                    UploadId=self._upload_id,
                )
        except ClientError as e:
            logger.warning("s3_abort_multipart_failed", key=self.key, error=str(e))
        finally:
            await self._exit_stack.aclose()

        logger.debug("s3_blob_aborted", key=self.key)


class S3BlobReader(BlobReader):
    def __init__(self, key: str, body: Any, exit_stack: AsyncExitStack):
        self.key = key
        self._body = body
        self._exit_stack = exit_stack

    async def read(self, size: int = -1) -> bytes:
        if size is None or size < 0:
            return await self._body.read()
        return await self._body.read(size)

    async def close(self) -> None:
        try:
            self._body.close()
        finally:
            await self._exit_stack.aclose()


class S3BlobStore:
    """Blob store backed by an S3 bucket, optionally under a key prefix."""

    def __init__(
        self,
        bucket: str,
        *,
        region: str = "us-east-1",
        endpoint_url: str | None = None,
        prefix: str = "",
        session: Any = None,
        part_size: int = DEFAULT_PART_SIZE,
        list_batch_size: int = 1000,
    ):
        if session is None:
            from aiobotocore.session import get_session

            session = get_session()

        self.bucket = bucket
        self.region = region
        self.endpoint_url = endpoint_url
        self.prefix = prefix
        self._session = session
        self._part_size = part_size
        self._list_batch_size = list_batch_size

    def _client(self):
        return self._session.create_client(
            "s3",
            region_name=self.region,
            endpoint_url=self.endpoint_url,
        )

    def _s3_key(self, key: str) -> str:
        if not key:
            raise BlobStoreError("Empty object key")
        return f"{self.prefix}{key}"

    async def list(self, prefix: str = "") -> List[BlobObject]:
        objects: List[BlobObject] = []
        full_prefix = f"{self.prefix}{prefix}"

        try:
            async with self._client() as client:
                paginator = client.get_paginator("list_objects_v2")
                async for page in paginator.paginate(
                    Bucket=self.bucket,
                    Prefix=full_prefix,
                    MaxKeys=self._list_batch_size,
                ):
                    for obj in page.get("Contents", []):
                        key = obj["Key"][len(self.prefix):]
                        # Objects in "subdirectories" of the prefix are not backups
                        if not key or "/" in key:
                            continue
                        objects.append(
                            BlobObject(key=key, size=obj["Size"], modified=obj["LastModified"])
                        )
        except ClientError as e:
            raise BlobStoreError(
                f"Failed to list objects: {e}",
                details={"bucket": self.bucket, "prefix": full_prefix},
            ) from e

        objects.sort(key=lambda o: o.key)
        return objects

    async def attributes(self, key: str) -> BlobObject:
        try:
            async with self._client() as client:
                response = await client.head_object(Bucket=self.bucket, Key=self._s3_key(key))
        except ClientError as e:
            if _is_not_found(e):
                raise BlobNotFoundError(f"Object not found: {key}", details={"key": key}) from e
            raise BlobStoreError(f"Failed to stat object: {e}", details={"key": key}) from e

        return BlobObject(
            key=key,
            size=response["ContentLength"],
            modified=response["LastModified"],
        )

    async def exists(self, key: str) -> bool:
        try:
            await self.attributes(key)
            return True
        except BlobNotFoundError:
            return False

    async def open_writer(self, key: str) -> S3BlobWriter:
        s3_key = self._s3_key(key)
        stack = AsyncExitStack()
        client = await stack.enter_async_context(self._client())
        return S3BlobWriter(key, s3_key, self.bucket, client, stack, self._part_size)

    async def open_reader(self, key: str) -> S3BlobReader:
        s3_key = self._s3_key(key)
        stack = AsyncExitStack()
        try:
            client = await stack.enter_async_context(self._client())
            response = await client.get_object(Bucket=self.bucket, Key=s3_key)
        except ClientError as e:
            await stack.aclose()
            if _is_not_found(e):
                raise BlobNotFoundError(f"Object not found: {key}", details={"key": key}) from e
            raise BlobStoreError(f"Failed to read object: {e}", details={"key": key}) from e
        return S3BlobReader(key, response["Body"], stack)

    async def delete(self, key: str) -> None:
        # DeleteObject succeeds for missing keys, so check first
        await self.attributes(key)
        try:
            async with self._client() as client:
                await client.delete_object(Bucket=self.bucket, Key=self._s3_key(key))
        except ClientError as e:
            raise BlobStoreError(f"Failed to delete object: {e}", details={"key": key}) from e

        logger.debug("s3_blob_deleted", key=key, bucket=self.bucket)

    async def close(self) -> None:
        """Clients are created per operation; nothing to release."""
        return None
