from __future__ import annotations

import logging
from typing import Any, Optional

import aioboto3
from botocore.config import Config
from botocore.exceptions import ClientError

from rgw_broker.models.s3 import FileItem
from rgw_broker.services.config import S3Config


logger = logging.getLogger(__name__)

_NOT_FOUND_CODES = frozenset({"NoSuchKey", "NoSuchBucket", "NotFound", "404"})


class S3ServiceError(RuntimeError):
    pass


class S3ObjectNotFoundError(S3ServiceError):
    pass


class S3BucketUnavailableError(S3ServiceError):
    """Bucket name is taken by another owner."""


def _error_code(exc: ClientError) -> str:
    return str(exc.response.get("Error", {}).get("Code") or "")


class S3Service:
    """S3 data-plane operations against RGW, scoped to a single credential pair."""

    def __init__(self, config: S3Config, *, session: Optional[aioboto3.Session] = None) -> None:
        self._config = config
        self._session = session or aioboto3.Session()

    @property
    def access_key(self) -> str:
        return self._config.access_key

    def for_credentials(self, *, access_key: str, secret_key: str) -> "S3Service":
        return S3Service(
            self._config.for_credentials(access_key=access_key, secret_key=secret_key),
            session=self._session,
        )

    def _client(self) -> Any:
        return self._session.client(
            "s3",
            region_name=self._config.region_name,
            endpoint_url=self._config.endpoint_url,
            aws_access_key_id=self._config.access_key,
            aws_secret_access_key=self._config.secret_key,
            config=Config(
                connect_timeout=self._config.timeout_seconds,
                read_timeout=self._config.timeout_seconds,
                retries={"total_max_attempts": 1, "mode": "standard"},
                s3={"addressing_style": "path"},
            ),
        )

    async def list_buckets(self) -> list[str]:
        try:
            s3_client: Any = self._client()
            async with s3_client as s3:
                response = await s3.list_buckets()
            return [str(b.get("Name")) for b in response.get("Buckets", [])]
        except Exception as exc:
            logger.exception("S3 list_buckets failed")
            raise S3ServiceError("Failed to list buckets from S3") from exc

    async def make_bucket(self, *, bucket: str) -> bool:
        """Create `bucket` owned by this service's identity.

        Returns:
            True if the bucket was created, False if this identity already owned it.

        Raises:
            S3BucketUnavailableError: if another owner holds the name.
        """

        if not bucket:
            raise ValueError("'bucket' must be provided")

        try:
            s3_client: Any = self._client()
            async with s3_client as s3:
                await s3.create_bucket(Bucket=bucket)
            return True
        except ClientError as exc:
            code = _error_code(exc)
            if code == "BucketAlreadyOwnedByYou":
                return False
            if code == "BucketAlreadyExists":
                raise S3BucketUnavailableError(f"Bucket name unavailable: {bucket!r} already exists") from exc
            logger.exception("S3 make_bucket failed (bucket=%s)", bucket)
            raise S3ServiceError(f"Failed to create bucket (bucket={bucket})") from exc
        except Exception as exc:
            logger.exception("S3 make_bucket failed (bucket=%s)", bucket)
            raise S3ServiceError(f"Failed to create bucket (bucket={bucket})") from exc

    async def list_files(self, *, bucket: str, prefix: Optional[str] = None, max_keys: int = 1000) -> list[FileItem]:
        try:
            kwargs: dict[str, Any] = {"Bucket": bucket, "MaxKeys": max_keys}
            if prefix:
                kwargs["Prefix"] = prefix

            items: list[FileItem] = []
            s3_client: Any = self._client()
            async with s3_client as s3:
                while True:
                    response = await s3.list_objects_v2(**kwargs)
                    items.extend(FileItem.from_s3_object(o) for o in response.get("Contents", []))
                    token = response.get("NextContinuationToken")
                    if not response.get("IsTruncated") or not token:
                        break
                    kwargs["ContinuationToken"] = token

            return items
        except Exception as exc:
            logger.exception("S3 list_files failed (bucket=%s prefix=%s)", bucket, prefix)
            raise S3ServiceError(f"Failed to list files from S3 (bucket={bucket})") from exc

    async def put_object(
        self,
        *,
        bucket: str,
        key: str,
        body: bytes,
        content_type: Optional[str] = None,
    ) -> None:
        if not key:
            raise ValueError("'key' must be provided")

        extra_args: dict[str, Any] = {}
        if content_type:
            extra_args["ContentType"] = content_type

        try:
            s3_client: Any = self._client()
            async with s3_client as s3:
                await s3.put_object(Bucket=bucket, Key=key, Body=body, **extra_args)
        except Exception as exc:
            logger.exception("S3 put_object failed (bucket=%s key=%s)", bucket, key)
            raise S3ServiceError(f"Failed to upload object to S3 (bucket={bucket}, key={key})") from exc

    async def object_size(self, *, bucket: str, key: str) -> int:
        try:
            s3_client: Any = self._client()
            async with s3_client as s3:
                response = await s3.head_object(Bucket=bucket, Key=key)
            return int(response.get("ContentLength", 0))
        except ClientError as exc:
            if _error_code(exc) in _NOT_FOUND_CODES:
                raise S3ObjectNotFoundError(f"Object not found (bucket={bucket}, key={key})") from exc
            logger.exception("S3 head_object failed (bucket=%s key=%s)", bucket, key)
            raise S3ServiceError(f"Failed to stat object in S3 (bucket={bucket}, key={key})") from exc
        except Exception as exc:
            logger.exception("S3 head_object failed (bucket=%s key=%s)", bucket, key)
            raise S3ServiceError(f"Failed to stat object in S3 (bucket={bucket}, key={key})") from exc

    async def get_object(self, *, bucket: str, key: str) -> bytes:
        try:
            s3_client: Any = self._client()
            async with s3_client as s3:
                response = await s3.get_object(Bucket=bucket, Key=key)
                async with response["Body"] as stream:
                    return await stream.read()
        except ClientError as exc:
            if _error_code(exc) in _NOT_FOUND_CODES:
                raise S3ObjectNotFoundError(f"Object not found (bucket={bucket}, key={key})") from exc
            logger.exception("S3 get_object failed (bucket=%s key=%s)", bucket, key)
            raise S3ServiceError(f"Failed to read object from S3 (bucket={bucket}, key={key})") from exc
        except Exception as exc:
            logger.exception("S3 get_object failed (bucket=%s key=%s)", bucket, key)
            raise S3ServiceError(f"Failed to read object from S3 (bucket={bucket}, key={key})") from exc

    async def delete_object(self, *, bucket: str, key: str) -> None:
        if not key:
            raise ValueError("'key' must be provided")

        try:
            s3_client: Any = self._client()
            async with s3_client as s3:
                await s3.delete_object(Bucket=bucket, Key=key)
        except Exception as exc:
            logger.exception("S3 delete_object failed (bucket=%s key=%s)", bucket, key)
            raise S3ServiceError(f"Failed to delete object from S3 (bucket={bucket}, key={key})") from exc
