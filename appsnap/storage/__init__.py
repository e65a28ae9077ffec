# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Blob Stores - Pluggable storage for backup archives.
"""

from appsnap.config import AppSnapConfig, StorageBackend
from appsnap.storage.base import BlobObject, BlobReader, BlobStore, BlobWriter
from appsnap.storage.local import LocalBlobStore


def open_blob_store(config: AppSnapConfig) -> BlobStore:
    """
    Build the blob store selected by the configuration.

    Args:
        config: AppSnap configuration

    Returns:
        A BlobStore implementation
    """
    if config.storage_backend == StorageBackend.S3:
        from appsnap.storage.s3 import S3BlobStore

        return S3BlobStore(
            config.s3_bucket,
            region=config.s3_region,
            endpoint_url=config.s3_endpoint_url,
            prefix=config.s3_prefix,
        )

    return LocalBlobStore(config.local_backups_path)


__all__ = [
    "BlobObject",
    "BlobReader",
    "BlobStore",
    "BlobWriter",
    "LocalBlobStore",
    "open_blob_store",
]
