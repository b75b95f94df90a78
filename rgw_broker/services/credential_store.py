from __future__ import annotations

from typing import TypeVar

from pydantic import BaseModel, ValidationError

from rgw_broker.services.s3_service import S3ObjectNotFoundError, S3Service, S3ServiceError


RecordT = TypeVar("RecordT", bound=BaseModel)

INSTANCE_PREFIX = "instance/"
BINDING_PREFIX = "bind/"


class CredentialStoreError(RuntimeError):
    pass


class RecordNotFoundError(CredentialStoreError):
    pass


class ShortWriteError(CredentialStoreError):
    def __init__(self, object_id: str, *, expected: int, written: int) -> None:
        super().__init__(f"Short write for record {object_id!r}: wrote {written} of {expected} bytes")
        self.object_id = object_id
        self.expected = expected
        self.written = written


def instance_object_id(instance_id: str) -> str:
    return f"{INSTANCE_PREFIX}{instance_id}"


def binding_prefix(instance_id: str) -> str:
    return f"{BINDING_PREFIX}{instance_id}/"


def binding_object_id(instance_id: str, binding_id: str) -> str:
    return f"{binding_prefix(instance_id)}{binding_id}"


class CredentialStore:
    """JSON records kept as objects in the broker's reserved data bucket.

    The store is the source of truth for instance and binding state; anything held
    in memory is a cache of it.
    """

    def __init__(self, *, s3: S3Service, bucket_name: str) -> None:
        self._s3 = s3
        self._bucket_name = bucket_name

    @property
    def bucket_name(self) -> str:
        return self._bucket_name

    async def put(self, object_id: str, record: BaseModel) -> None:
        payload = record.model_dump_json().encode("utf-8")

        try:
            await self._s3.put_object(
                bucket=self._bucket_name,
                key=object_id,
                body=payload,
                content_type="application/json",
            )
            written = await self._s3.object_size(bucket=self._bucket_name, key=object_id)
        except S3ObjectNotFoundError as exc:
            raise ShortWriteError(object_id, expected=len(payload), written=0) from exc
        except S3ServiceError as exc:
            raise CredentialStoreError(f"Failed to store record {object_id!r}") from exc

        if written != len(payload):
            raise ShortWriteError(object_id, expected=len(payload), written=written)

    async def get(self, object_id: str, model: type[RecordT]) -> RecordT:
        """Load a record.

        Raises:
            RecordNotFoundError: if no object exists under `object_id`.
            CredentialStoreError: on transport failures or a malformed record.
        """

        try:
            payload = await self._s3.get_object(bucket=self._bucket_name, key=object_id)
        except S3ObjectNotFoundError as exc:
            raise RecordNotFoundError(f"Record not found: {object_id!r}") from exc
        except S3ServiceError as exc:
            raise CredentialStoreError(f"Failed to read record {object_id!r}") from exc

        try:
            return model.model_validate_json(payload)
        except ValidationError as exc:
            raise CredentialStoreError(f"Malformed record {object_id!r}") from exc

    async def delete(self, object_id: str) -> None:
        try:
            await self._s3.delete_object(bucket=self._bucket_name, key=object_id)
        except S3ServiceError as exc:
            raise CredentialStoreError(f"Failed to delete record {object_id!r}") from exc

    async def list_ids(self, prefix: str) -> list[str]:
        try:
            items = await self._s3.list_files(bucket=self._bucket_name, prefix=prefix)
        except S3ServiceError as exc:
            raise CredentialStoreError(f"Failed to list records (prefix={prefix!r})") from exc
        return [item.key for item in items]
