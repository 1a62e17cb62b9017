"""
storage/broker.py -- Object-storage access for uploads, grants and proxying.

AssetBroker wraps a boto3 S3 client. It never makes authorization decisions:
callers decide who may see an object (storage/avatars.py for avatars) and
only then ask the broker for bytes or a grant.

Two backing-store shapes are supported behind the same interface:

  Standard S3      public objects are written with ACL=public-read and served
                   from https://{bucket}.s3.{region}.amazonaws.com/{key}.
  Edge store (R2)  selected when the endpoint contains r2.cloudflarestorage.com.
                   R2 rejects object ACLs, so none is sent; public objects are
                   served from AWS_S3_PUBLIC_DOMAIN, or the bucket's r2.dev host.

Private objects are only ever reached through a presigned GET (grant_access)
or the authenticated proxy route, which uses stream(). The private storage
key itself is never a client-facing locator.

Errors:
  missing object                      -> NotFound
  any other botocore / network error  -> StorageUnavailable
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from datetime import datetime, timezone
from email.utils import format_datetime

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from core.config import Settings
from core.errors import NotFound, StorageUnavailable
from storage.assets import AssetType, policy_for

logger = logging.getLogger("shopgate.storage")

EDGE_STORE_MARKER = "r2.cloudflarestorage.com"
DEFAULT_CONTENT_TYPE = "application/octet-stream"
CHUNK_SIZE = 64 * 1024

_MISSING_CODES = {"NoSuchKey", "404", "NotFound"}


class AssetStream:
    """An open object body plus the metadata a proxy response needs.

    iter_chunks() reads the body in bounded chunks and closes it when the
    iteration ends for any reason. close() is idempotent, so the HTTP layer
    can also call it when the client goes away before iteration finishes.
    """

    def __init__(
        self,
        body,
        content_type: str | None,
        content_length: int | None,
        last_modified: datetime | None,
        chunk_size: int = CHUNK_SIZE,
    ) -> None:
        self._body = body
        self.content_type = content_type or DEFAULT_CONTENT_TYPE
        self.content_length = content_length
        self.last_modified = last_modified
        self._chunk_size = chunk_size
        self.closed = False

    @property
    def last_modified_http(self) -> str | None:
        if self.last_modified is None:
            return None
        return format_datetime(self.last_modified.astimezone(timezone.utc), usegmt=True)

    def iter_chunks(self) -> Iterator[bytes]:
        try:
            for chunk in self._body.iter_chunks(self._chunk_size):
                if chunk:
                    yield chunk
        finally:
            self.close()

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._body.close()


class AssetBroker:
    """Uploads, grants and streams assets in a public and a private bucket.

    Usage:
        broker = AssetBroker.from_settings(get_settings())
        url = broker.upload(AssetType.PRODUCT_IMAGE, "products/42.jpg", data, "image/jpeg")
        key = broker.upload(AssetType.AVATAR, "avatars/user-7-1700000000000.png", data, "image/png")
        link = broker.grant_access(key, AssetType.AVATAR)
    """

    def __init__(
        self,
        client,
        public_bucket: str,
        private_bucket: str,
        region: str,
        endpoint: str | None = None,
        public_domain: str | None = None,
    ) -> None:
        self._client = client
        self.public_bucket = public_bucket
        self.private_bucket = private_bucket
        self.region = region
        self.endpoint = endpoint or None
        self.public_domain = (public_domain or "").rstrip("/") or None
        if public_bucket == private_bucket:
            logger.warning(
                "Public and private assets share bucket %r. Private objects are only as safe as the "
                "bucket policy; configure AWS_S3_PUBLIC_BUCKET and AWS_S3_PRIVATE_BUCKET separately.",
                public_bucket,
            )

    @classmethod
    def from_settings(cls, settings: Settings) -> AssetBroker | None:
        """Build a broker from settings, or return None when storage is not configured."""
        if not settings.storage_configured:
            logger.info("Object storage not configured; asset routes will answer 503")
            return None
        client = boto3.client(
            "s3",
            region_name=settings.aws_region,
            endpoint_url=settings.aws_s3_endpoint or None,
            aws_access_key_id=settings.aws_access_key_id,
            aws_secret_access_key=settings.aws_secret_access_key,
            config=Config(
                connect_timeout=settings.storage_connect_timeout_seconds,
                read_timeout=settings.storage_read_timeout_seconds,
                retries={"max_attempts": settings.storage_max_attempts, "mode": "standard"},
                signature_version="s3v4",
            ),
        )
        return cls(
            client,
            public_bucket=settings.public_bucket,
            private_bucket=settings.private_bucket,
            region=settings.aws_region,
            endpoint=settings.aws_s3_endpoint,
            public_domain=settings.aws_s3_public_domain,
        )

    @property
    def is_edge_store(self) -> bool:
        return bool(self.endpoint and EDGE_STORE_MARKER in self.endpoint)

    def bucket_for(self, asset_type: AssetType) -> str:
        return self.public_bucket if policy_for(asset_type).is_public else self.private_bucket

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def upload(self, asset_type: AssetType, key: str, data: bytes, content_type: str) -> str:
        """Store data under key and return its locator.

        Public categories return a directly fetchable URL. Private categories
        return the storage key, which callers keep server-side.
        """
        policy = policy_for(asset_type)
        params = {
            "Bucket": self.bucket_for(asset_type),
            "Key": key,
            "Body": data,
            "ContentType": content_type,
            "CacheControl": policy.cache_control,
        }
        if policy.is_public and not self.is_edge_store:
            params["ACL"] = "public-read"

        try:
            self._client.put_object(**params)
        except (ClientError, BotoCoreError) as exc:
            logger.error("Upload of %s to %s failed: %s", key, params["Bucket"], exc)
            raise StorageUnavailable() from exc

        logger.info("Uploaded %s asset %s (%d bytes)", AssetType(asset_type).value, key, len(data))
        return self.public_url(key) if policy.is_public else key

    def public_url(self, key: str) -> str:
        if self.is_edge_store:
            if self.public_domain:
                return f"{self.public_domain}/{key}"
            return f"https://{self.public_bucket}.r2.dev/{key}"
        return f"https://{self.public_bucket}.s3.{self.region}.amazonaws.com/{key}"

    def grant_access(self, key: str, asset_type: AssetType) -> str:
        """Return a time-bounded URL for key.

        Private categories get a presigned GET valid for the policy's grant
        lifetime. Public categories need no grant and get their public URL.
        """
        policy = policy_for(asset_type)
        if policy.is_public:
            return self.public_url(key)
        try:
            return self._client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.private_bucket, "Key": key},
                ExpiresIn=policy.grant_lifetime_seconds,
            )
        except (ClientError, BotoCoreError) as exc:
            logger.error("Could not presign %s: %s", key, exc)
            raise StorageUnavailable() from exc

    def stream(self, key: str, asset_type: AssetType = AssetType.AVATAR) -> AssetStream:
        """Open an object for proxying. The caller must already have authorized the request."""
        bucket = self.bucket_for(asset_type)
        try:
            obj = self._client.get_object(Bucket=bucket, Key=key)
        except ClientError as exc:
            code = str(exc.response.get("Error", {}).get("Code", ""))
            if code in _MISSING_CODES:
                raise NotFound("Asset not found.") from exc
            logger.error("Fetching %s from %s failed: %s", key, bucket, exc)
            raise StorageUnavailable() from exc
        except BotoCoreError as exc:
            logger.error("Fetching %s from %s failed: %s", key, bucket, exc)
            raise StorageUnavailable() from exc

        body = obj.get("Body")
        if body is None:
            raise StorageUnavailable(detail="object response carried no body")
        return AssetStream(
            body,
            content_type=obj.get("ContentType"),
            content_length=obj.get("ContentLength"),
            last_modified=obj.get("LastModified"),
        )
