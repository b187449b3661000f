"""
Storage API Module - The "Asset Warehouse"
=========================================

This module wraps the object store holding exercise demonstration
animations. Exercise templates reference each animation by its public URL;
the store itself is addressed by object key ("path").

Core Responsibilities:
- Listing animation objects under the exercise prefix
- Translating between object paths and public URLs
- Reading an object's creation time
- Deleting objects, restricted to the exercise prefix
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional
from urllib.parse import quote, unquote

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from dateutil import parser as date_parser

from config.settings import (
    AWS_ACCESS_KEY_ID,
    AWS_REGION,
    AWS_S3_BUCKET_NAME,
    AWS_S3_ENDPOINT_URL,
    AWS_SECRET_ACCESS_KEY,
    EXERCISE_ASSETS_PREFIX,
    EXERCISE_ASSET_SUFFIX,
)
from kine_app.database.models import ensure_utc
from kine_app.errors import StorageError

# Configure logging
logger = logging.getLogger(__name__)

# User metadata key written by the upload path (S3 lowercases it)
UPLOADED_AT_METADATA_KEY = "uploadedat"


@dataclass
class StoredAsset:
    """An animation object found in the bucket"""
    path: str
    url: str


class AssetStorage:
    """
    Thin client over the S3 bucket holding exercise animations.
    """

    def __init__(self,
                 client=None,
                 bucket_name: str = AWS_S3_BUCKET_NAME,
                 region: str = AWS_REGION,
                 endpoint_url: Optional[str] = AWS_S3_ENDPOINT_URL,
                 prefix: str = EXERCISE_ASSETS_PREFIX):
        if not bucket_name:
            raise StorageError("Storage bucket not configured. Check AWS_S3_BUCKET_NAME.")

        self.bucket_name = bucket_name
        self.region = region or 'us-east-1'
        self.endpoint_url = endpoint_url.rstrip('/') if endpoint_url else None
        self.prefix = prefix

        if client is not None:
            self.s3_client = client
        else:
            try:
                self.s3_client = boto3.client(
                    's3',
                    aws_access_key_id=AWS_ACCESS_KEY_ID,
                    aws_secret_access_key=AWS_SECRET_ACCESS_KEY,
                    region_name=self.region,
                    endpoint_url=self.endpoint_url
                )
                logger.info("S3 client initialized successfully")
            except (BotoCoreError, ValueError) as e:
                logger.error(f"Failed to initialize S3 client: {e}")
                raise StorageError("Failed to initialize object storage connection") from e

        self._url_pattern = self._build_url_pattern()

    # -------------------------------------------------------------------------
    # URL <-> path
    # -------------------------------------------------------------------------

    @property
    def base_url(self) -> str:
        if self.endpoint_url:
            return f"{self.endpoint_url}/{self.bucket_name}"
        return f"https://{self.bucket_name}.s3.{self.region}.amazonaws.com"

    def _build_url_pattern(self) -> "re.Pattern[str]":
        return re.compile(r'^' + re.escape(self.base_url) + r'/([^?#]+)(?:[?#].*)?$')

    def public_url(self, path: str) -> str:
        """Public URL of an object, as stored on exercise templates."""
        return f"{self.base_url}/{quote(path)}"

    def path_from_url(self, url: str) -> Optional[str]:
        """
        Extract the object path from a public URL.

        Returns:
            The decoded object path, or None when the URL does not belong to
            this bucket.
        """
        if not url:
            return None

        match = self._url_pattern.match(url)
        if not match:
            return None

        return unquote(match.group(1))

    # -------------------------------------------------------------------------
    # Object operations
    # -------------------------------------------------------------------------

    def list_assets(self, suffix: str = EXERCISE_ASSET_SUFFIX) -> List[StoredAsset]:
        """
        List every object under the exercise prefix whose key ends with suffix.

        Raises:
            StorageError: If the listing fails
        """
        assets = []
        try:
            paginator = self.s3_client.get_paginator('list_objects_v2')
            for page in paginator.paginate(Bucket=self.bucket_name, Prefix=self.prefix):
                for obj in page.get('Contents', []):
                    key = obj['Key']
                    if not key.endswith(suffix):
                        continue
                    assets.append(StoredAsset(path=key, url=self.public_url(key)))
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error listing assets under {self.prefix}: {e}")
            raise StorageError(f"Failed to list assets: {e}") from e

        logger.info(f"Listed {len(assets)} assets under {self.prefix}")
        return assets

    def get_created_at(self, path: str) -> datetime:
        """
        Read the creation time of an object.

        The upload path records an `uploadedAt` user metadata entry; objects
        without it fall back to the store's LastModified timestamp.

        Raises:
            StorageError: If the object cannot be read
        """
        try:
            head = self.s3_client.head_object(Bucket=self.bucket_name, Key=path)
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"Failed to read metadata for {path}: {e}") from e

        uploaded_at = (head.get('Metadata') or {}).get(UPLOADED_AT_METADATA_KEY)
        if uploaded_at:
            try:
                return ensure_utc(date_parser.isoparse(uploaded_at))
            except ValueError:
                logger.warning(f"Unparseable uploadedAt metadata on {path}: {uploaded_at}")

        last_modified = head.get('LastModified')
        if last_modified is None:
            raise StorageError(f"No creation time available for {path}")
        return ensure_utc(last_modified)

    def delete_asset(self, path: str) -> None:
        """
        Delete an object inside the exercise prefix.

        Raises:
            StorageError: If the path is outside the prefix or deletion fails
        """
        if not path or not path.startswith(self.prefix):
            logger.error(f"Refusing to delete object outside {self.prefix}: {path}")
            raise StorageError(f"Path not allowed: {path}")

        try:
            self.s3_client.delete_object(Bucket=self.bucket_name, Key=path)
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"Failed to delete {path}: {e}") from e

        logger.info(f"Asset deleted from storage: {path}")
