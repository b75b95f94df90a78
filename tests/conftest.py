"""In-memory stand-ins for the RGW admin API and the S3 data plane.

`FakeRGW` holds the backend state (users, keys, buckets, objects). `FakeAdminService`
and `FakeS3Service` expose it with the same method signatures and error types as
`RGWAdminService` and `S3Service`, so broker code runs against them unchanged.
"""

from __future__ import annotations

import itertools
from typing import Any, Optional

import pytest

from rgw_broker.models.s3 import FileItem
from rgw_broker.services.admin_service import AdminAPIError, BucketMetadata, RGWKey, RGWUser
from rgw_broker.services.broker_service import BrokerService
from rgw_broker.services.config import BrokerConfig
from rgw_broker.services.credential_store import CredentialStore
from rgw_broker.services.gc_handoff_service import GCHandoffService
from rgw_broker.services.s3_service import S3BucketUnavailableError, S3ObjectNotFoundError, S3ServiceError

RGW_ENDPOINT = "http://rgw.test:8000"
MASTER_USER = "broker-admin"
MASTER_ACCESS_KEY = "MASTERACCESSKEY00000"
MASTER_SECRET_KEY = "master-secret"


class FakeRGW:
    def __init__(self) -> None:
        self.users: dict[str, dict[str, Any]] = {}
        self.buckets: dict[str, dict[str, str]] = {}
        self.objects: dict[str, dict[str, bytes]] = {}
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.failures: dict[str, Exception] = {}
        self.short_writes: set[str] = set()
        self._counter = itertools.count(1)

    def next_id(self) -> int:
        return next(self._counter)

    def add_user(self, user_id: str, *, keys: Optional[dict[str, str]] = None) -> None:
        self.users[user_id] = {
            "display_name": user_id,
            "suspended": False,
            "max_buckets": 1000,
            "keys": dict(keys or {}),
        }

    def add_bucket(self, name: str, *, owner: str) -> str:
        bucket_id = f"{name}.{self.next_id()}"
        self.buckets[name] = {"bucket_id": bucket_id, "owner": owner}
        self.objects.setdefault(name, {})
        return bucket_id

    def owner_of_access_key(self, access_key: str) -> Optional[str]:
        for user_id, user in self.users.items():
            if access_key in user["keys"]:
                return user_id
        return None

    def keys_of(self, user_id: str) -> set[str]:
        return set(self.users[user_id]["keys"])

    def record(self, name: str, **kwargs: Any) -> None:
        self.calls.append((name, kwargs))
        failure = self.failures.pop(name, None)
        if failure is not None:
            raise failure

    def call_count(self, name: str) -> int:
        return sum(1 for call, _ in self.calls if call == name)


class FakeAdminService:
    def __init__(self, rgw: FakeRGW, *, endpoint: str = RGW_ENDPOINT) -> None:
        self._rgw = rgw
        self.endpoint = endpoint

    def _user(self, user_id: str) -> RGWUser:
        user = self._rgw.users.get(user_id)
        if user is None:
            raise AdminAPIError(404, f"NoSuchUser {user_id}")
        return RGWUser(
            user_id=user_id,
            display_name=user["display_name"],
            suspended=user["suspended"],
            max_buckets=user["max_buckets"],
            keys=tuple(RGWKey(user=user_id, access_key=a, secret_key=s) for a, s in user["keys"].items()),
        )

    async def create_user(
        self,
        *,
        user_id: str,
        display_name: str,
        generate_key: bool = True,
        success_if_exists: bool = True,
    ) -> RGWUser:
        self._rgw.record("create_user", user_id=user_id, generate_key=generate_key)
        if user_id in self._rgw.users:
            if not success_if_exists:
                raise AdminAPIError(409, "UserAlreadyExists")
            return self._user(user_id)

        keys = {}
        if generate_key:
            n = self._rgw.next_id()
            keys[f"USERKEY{n:013d}"] = f"user-secret-{n}"
        self._rgw.add_user(user_id, keys=keys)
        self._rgw.users[user_id]["display_name"] = display_name
        return self._user(user_id)

    async def get_user(self, user_id: str) -> RGWUser:
        self._rgw.record("get_user", user_id=user_id)
        return self._user(user_id)

    async def modify_user(self, *, user_id: str, attr: str, value: str) -> RGWUser:
        self._rgw.record("modify_user", user_id=user_id, attr=attr, value=value)
        user = self._rgw.users.get(user_id)
        if user is None:
            raise AdminAPIError(404, f"NoSuchUser {user_id}")
        if attr == "suspended":
            user["suspended"] = value == "true"
        elif attr == "max-buckets":
            user["max_buckets"] = int(value)
        return self._user(user_id)

    async def suspend_user(self, user_id: str) -> RGWUser:
        return await self.modify_user(user_id=user_id, attr="suspended", value="true")

    async def create_key(self, *, user_id: str, access_key: str) -> RGWKey:
        self._rgw.record("create_key", user_id=user_id, access_key=access_key)
        user = self._rgw.users.get(user_id)
        if user is None:
            raise AdminAPIError(404, f"NoSuchUser {user_id}")
        if self._rgw.owner_of_access_key(access_key) is not None:
            raise AdminAPIError(409, "KeyExists")
        secret = f"secret-{self._rgw.next_id()}"
        user["keys"][access_key] = secret
        return RGWKey(user=user_id, access_key=access_key, secret_key=secret)

    async def remove_key(self, *, user_id: str, access_key: str) -> None:
        self._rgw.record("remove_key", user_id=user_id, access_key=access_key)
        user = self._rgw.users.get(user_id)
        if user is None or access_key not in user["keys"]:
            raise AdminAPIError(404, "InvalidAccessKeyId")
        del user["keys"][access_key]

    async def get_bucket_metadata(self, bucket_name: str) -> Optional[BucketMetadata]:
        self._rgw.record("get_bucket_metadata", bucket_name=bucket_name)
        bucket = self._rgw.buckets.get(bucket_name)
        if bucket is None:
            return None
        return BucketMetadata(name=bucket_name, bucket_id=bucket["bucket_id"], owner=bucket["owner"])

    async def unlink_bucket(self, *, user_id: str, bucket_name: str) -> None:
        self._rgw.record("unlink_bucket", user_id=user_id, bucket_name=bucket_name)
        bucket = self._rgw.buckets.get(bucket_name)
        if bucket is None or bucket["owner"] != user_id:
            raise AdminAPIError(404, "NoSuchBucket")
        bucket["owner"] = ""

    async def link_bucket(self, *, user_id: str, bucket_name: str, bucket_id: str) -> None:
        self._rgw.record("link_bucket", user_id=user_id, bucket_name=bucket_name, bucket_id=bucket_id)
        bucket = self._rgw.buckets.get(bucket_name)
        if bucket is None or bucket["bucket_id"] != bucket_id:
            raise AdminAPIError(404, "NoSuchBucket")
        if user_id not in self._rgw.users:
            raise AdminAPIError(404, f"NoSuchUser {user_id}")
        bucket["owner"] = user_id


class FakeS3Service:
    def __init__(self, rgw: FakeRGW, *, access_key: str) -> None:
        self._rgw = rgw
        self._access_key = access_key

    @property
    def access_key(self) -> str:
        return self._access_key

    def for_credentials(self, *, access_key: str, secret_key: str) -> "FakeS3Service":
        return FakeS3Service(self._rgw, access_key=access_key)

    def _objects(self, bucket: str) -> dict[str, bytes]:
        if bucket not in self._rgw.buckets:
            raise S3ServiceError(f"NoSuchBucket {bucket}")
        return self._rgw.objects.setdefault(bucket, {})

    async def list_buckets(self) -> list[str]:
        return sorted(self._rgw.buckets)

    async def make_bucket(self, *, bucket: str) -> bool:
        self._rgw.record("make_bucket", bucket=bucket, access_key=self._access_key)
        owner = self._rgw.owner_of_access_key(self._access_key)
        if owner is None:
            raise S3ServiceError("InvalidAccessKeyId")
        existing = self._rgw.buckets.get(bucket)
        if existing is not None:
            if existing["owner"] == owner:
                return False
            raise S3BucketUnavailableError(f"Bucket name unavailable: {bucket!r} already exists")
        self._rgw.add_bucket(bucket, owner=owner)
        return True

    async def list_files(self, *, bucket: str, prefix: Optional[str] = None, max_keys: int = 1000) -> list[FileItem]:
        objects = self._objects(bucket)
        return [
            FileItem(key=key, size=len(body))
            for key, body in sorted(objects.items())
            if not prefix or key.startswith(prefix)
        ]

    async def put_object(self, *, bucket: str, key: str, body: bytes, content_type: Optional[str] = None) -> None:
        self._rgw.record("put_object", bucket=bucket, key=key)
        if key in self._rgw.short_writes:
            body = body[: len(body) // 2]
        self._objects(bucket)[key] = body

    async def object_size(self, *, bucket: str, key: str) -> int:
        objects = self._objects(bucket)
        if key not in objects:
            raise S3ObjectNotFoundError(key)
        return len(objects[key])

    async def get_object(self, *, bucket: str, key: str) -> bytes:
        objects = self._objects(bucket)
        if key not in objects:
            raise S3ObjectNotFoundError(key)
        return objects[key]

    async def delete_object(self, *, bucket: str, key: str) -> None:
        self._rgw.record("delete_object", bucket=bucket, key=key)
        self._objects(bucket).pop(key, None)


@pytest.fixture
def broker_config() -> BrokerConfig:
    return BrokerConfig()


@pytest.fixture
def rgw(broker_config: BrokerConfig) -> FakeRGW:
    backend = FakeRGW()
    backend.add_user(MASTER_USER, keys={MASTER_ACCESS_KEY: MASTER_SECRET_KEY})
    backend.add_user(broker_config.gc_user)
    backend.add_bucket(broker_config.data_bucket, owner=MASTER_USER)
    return backend


@pytest.fixture
def admin(rgw: FakeRGW) -> FakeAdminService:
    return FakeAdminService(rgw)


@pytest.fixture
def s3(rgw: FakeRGW) -> FakeS3Service:
    return FakeS3Service(rgw, access_key=MASTER_ACCESS_KEY)


@pytest.fixture
def store(s3: FakeS3Service, broker_config: BrokerConfig) -> CredentialStore:
    return CredentialStore(s3=s3, bucket_name=broker_config.data_bucket)  # type: ignore[arg-type]


@pytest.fixture
def gc(admin: FakeAdminService, broker_config: BrokerConfig) -> GCHandoffService:
    return GCHandoffService(admin=admin, gc_user=broker_config.gc_user)  # type: ignore[arg-type]


@pytest.fixture
def broker(
    broker_config: BrokerConfig,
    admin: FakeAdminService,
    s3: FakeS3Service,
    store: CredentialStore,
    gc: GCHandoffService,
) -> BrokerService:
    return BrokerService(broker_config, admin=admin, s3=s3, store=store, gc=gc)  # type: ignore[arg-type]
