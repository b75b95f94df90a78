from __future__ import annotations

import asyncio
import logging
import uuid
from http import HTTPStatus
from typing import Any, Callable, Mapping, Optional

from rgw_broker.models.broker import CatalogResponse, ProvisionParameters, ServiceOffering, ServicePlan
from rgw_broker.models.records import BindingCredentials, BindingRecord, InstanceState, ServiceInstanceRecord
from rgw_broker.services.admin_service import AdminAPIError, AdminServiceError, RGWAdminService, RGWKey, generate_access_key
from rgw_broker.services.config import BrokerConfig
from rgw_broker.services.credential_store import (
    INSTANCE_PREFIX,
    CredentialStore,
    CredentialStoreError,
    RecordNotFoundError,
    binding_object_id,
    binding_prefix,
    instance_object_id,
)
from rgw_broker.services.gc_handoff_service import GCHandoffService
from rgw_broker.services.s3_service import S3BucketUnavailableError, S3Service


logger = logging.getLogger(__name__)

SERVICE_ID = "0"
SERVICE_NAME = "rgw-bucket-service"
PLAN_ID = "0"
PLAN_NAME = "default"


class BrokerServiceError(RuntimeError):
    pass


class InstanceAlreadyExistsError(BrokerServiceError):
    pass


class InstanceNotFoundError(BrokerServiceError):
    pass


class BindingNotFoundError(BrokerServiceError):
    pass


class BucketUnavailableError(BrokerServiceError):
    pass


class InstanceRegistry:
    """In-memory cache of live (active) service instances.

    The credential store is authoritative; this map only saves round trips and can
    be rebuilt from it at any time. `write_lock` is held across the whole of
    instance creation and removal. Plain lookups take no lock: dict access on the
    event loop thread cannot interleave with a writer between awaits.
    """

    def __init__(self) -> None:
        self._instances: dict[str, ServiceInstanceRecord] = {}
        self._write_lock = asyncio.Lock()
        self._binding_locks: dict[str, asyncio.Lock] = {}

    @property
    def write_lock(self) -> asyncio.Lock:
        return self._write_lock

    def binding_lock(self, instance_id: str) -> asyncio.Lock:
        """Lock serializing bind/unbind for one instance."""

        lock = self._binding_locks.get(instance_id)
        if lock is None:
            lock = self._binding_locks[instance_id] = asyncio.Lock()
        return lock

    def get(self, instance_id: str) -> Optional[ServiceInstanceRecord]:
        return self._instances.get(instance_id)

    def put(self, record: ServiceInstanceRecord) -> None:
        self._instances[record.instance_id] = record

    def evict(self, instance_id: str) -> None:
        self._instances.pop(instance_id, None)
        # Keep a lock that an in-flight bind or unbind still holds.
        lock = self._binding_locks.get(instance_id)
        if lock is not None and not lock.locked():
            del self._binding_locks[instance_id]

    def __contains__(self, instance_id: object) -> bool:
        return instance_id in self._instances

    def __len__(self) -> int:
        return len(self._instances)


class BrokerService:
    """Tenant lifecycle: provisioning, deprovisioning, binding and unbinding.

    Each instance is one RGW user plus one bucket owned by it; each binding is one
    extra S3 key on that user. All state is persisted through `CredentialStore`.

    Provisioning is resumable. A `provisioning` record is written before any
    backend call and promoted to `active` once the user and bucket exist, so a
    retried create picks up the same names and a remove can clean up after a
    failed create.
    """

    def __init__(
        self,
        config: BrokerConfig,
        *,
        admin: RGWAdminService,
        s3: S3Service,
        store: CredentialStore,
        gc: GCHandoffService,
        registry: Optional[InstanceRegistry] = None,
        key_generator: Callable[[int], str] = generate_access_key,
    ) -> None:
        self._config = config
        self._admin = admin
        self._s3 = s3
        self._store = store
        self._gc = gc
        self._registry = registry or InstanceRegistry()
        self._key_generator = key_generator

    @property
    def registry(self) -> InstanceRegistry:
        return self._registry

    @staticmethod
    def catalog() -> CatalogResponse:
        return CatalogResponse(
            services=[
                ServiceOffering(
                    id=SERVICE_ID,
                    name=SERVICE_NAME,
                    description="A bucket of storage objects backed by Ceph RGW.",
                    bindable=True,
                    plans=[
                        ServicePlan(
                            id=PLAN_ID,
                            name=PLAN_NAME,
                            description="The best plan, and the only one.",
                            free=True,
                        )
                    ],
                )
            ]
        )

    @staticmethod
    def _random_id() -> str:
        return uuid.uuid4().hex

    # -----------------
    # Lookups
    # -----------------

    async def _lookup_instance(self, instance_id: str) -> Optional[ServiceInstanceRecord]:
        """Registry first, then the store. May return a `provisioning` record."""

        cached = self._registry.get(instance_id)
        if cached is not None:
            return cached

        try:
            record = await self._store.get(instance_object_id(instance_id), ServiceInstanceRecord)
        except RecordNotFoundError:
            return None

        if record.is_active:
            self._registry.put(record)
        return record

    async def get_instance(self, instance_id: str) -> Optional[ServiceInstanceRecord]:
        """Return the live instance, or None if unknown or not fully provisioned."""

        record = await self._lookup_instance(instance_id)
        if record is None or not record.is_active:
            return None
        return record

    async def _find_binding(self, instance_id: str, binding_id: str) -> Optional[BindingRecord]:
        try:
            return await self._store.get(binding_object_id(instance_id, binding_id), BindingRecord)
        except RecordNotFoundError:
            return None

    async def get_binding(self, instance_id: str, binding_id: str) -> BindingCredentials:
        if await self.get_instance(instance_id) is None:
            raise InstanceNotFoundError(f"Instance ID {instance_id!r} not found")

        binding = await self._find_binding(instance_id, binding_id)
        if binding is None:
            raise BindingNotFoundError(f"Binding {binding_id!r} not found for instance {instance_id!r}")
        return binding.credentials()

    async def rebuild_registry(self) -> int:
        """Load every active instance record from the store into the registry."""

        async with self._registry.write_lock:
            loaded = 0
            for object_id in await self._store.list_ids(INSTANCE_PREFIX):
                try:
                    record = await self._store.get(object_id, ServiceInstanceRecord)
                except RecordNotFoundError:
                    continue
                if record.is_active:
                    self._registry.put(record)
                    loaded += 1

        logger.info("Instance registry rebuilt from store (instances=%d)", loaded)
        return loaded

    # -----------------
    # Instances
    # -----------------

    async def create_service_instance(
        self,
        instance_id: str,
        *,
        parameters: Optional[ProvisionParameters] = None,
        namespace: Optional[str] = None,
    ) -> ServiceInstanceRecord:
        """Provision an RGW user and bucket for `instance_id`.

        Raises:
            InstanceAlreadyExistsError: if a live instance with this ID exists.
            BucketUnavailableError: if the requested bucket name belongs to someone else.
        """

        logger.info("CreateServiceInstance called (instance_id=%s)", instance_id)
        parameters = parameters or ProvisionParameters()

        async with self._registry.write_lock:
            existing = await self._lookup_instance(instance_id)
            if existing is not None and existing.is_active:
                logger.error("Instance requested already exists (instance_id=%s)", instance_id)
                raise InstanceAlreadyExistsError(f"ServiceInstance {instance_id!r} already exists")

            if existing is not None:
                logger.info(
                    "Resuming interrupted provisioning (instance_id=%s user=%s bucket=%s)",
                    instance_id,
                    existing.user_name,
                    existing.bucket_name,
                )
                pending = existing
            else:
                bucket_name = (parameters.bucket_name or "").strip()
                if not bucket_name:
                    bucket_name = self._random_id()
                    logger.info("Bucket name not provided, generated %r (instance_id=%s)", bucket_name, instance_id)

                pending = ServiceInstanceRecord(
                    instance_id=instance_id,
                    namespace=namespace,
                    endpoint=self._admin.endpoint,
                    user_name=f"{self._config.uid_prefix}{self._random_id()}",
                    bucket_name=bucket_name,
                    state=InstanceState.PROVISIONING,
                )
                await self._store.put(instance_object_id(instance_id), pending)

            await self._provision_backend(pending)

            active = pending.model_copy(update={"state": InstanceState.ACTIVE})
            await self._store.put(instance_object_id(instance_id), active)
            self._registry.put(active)

        logger.info(
            "CreateServiceInstance succeeded (instance_id=%s user=%s bucket=%s)",
            instance_id,
            active.user_name,
            active.bucket_name,
        )
        return active

    async def _provision_backend(self, record: ServiceInstanceRecord) -> None:
        user = await self._admin.create_user(
            user_id=record.user_name,
            display_name=f"service instance {record.instance_id}",
            generate_key=True,
            success_if_exists=True,
        )
        key = user.own_key()
        if key is None:
            raise BrokerServiceError(
                f"RGW user {record.user_name!r} has no S3 key to create bucket {record.bucket_name!r} "
                f"(instance_id={record.instance_id})"
            )

        tenant_s3 = self._s3.for_credentials(access_key=key.access_key, secret_key=key.secret_key)
        try:
            created = await tenant_s3.make_bucket(bucket=record.bucket_name)
        except S3BucketUnavailableError as exc:
            # The name will never succeed; drop the pending record so the caller can retry with another.
            await self._delete_record_quietly(instance_object_id(record.instance_id))
            raise BucketUnavailableError(
                f"Bucket name unavailable: {record.bucket_name!r} already exists (instance_id={record.instance_id})"
            ) from exc

        if not created:
            logger.info("Bucket already owned by tenant user (bucket=%s user=%s)", record.bucket_name, record.user_name)

        await self._admin.modify_user(user_id=record.user_name, attr="max-buckets", value="-1")

    async def remove_service_instance(self, instance_id: str) -> None:
        """Suspend the tenant user and hand its bucket to the GC user.

        Unknown instances are treated as already removed.
        """

        logger.info("RemoveServiceInstance called (instance_id=%s)", instance_id)

        async with self._registry.write_lock:
            record = await self._lookup_instance(instance_id)
            if record is None:
                logger.info("Instance not found, nothing to remove (instance_id=%s)", instance_id)
                return

            await self._suspend_user(record.user_name)
            await self._gc.hand_off(user_name=record.user_name, bucket_name=record.bucket_name)

            await self._delete_bindings_quietly(instance_id)
            await self._delete_record_quietly(instance_object_id(instance_id))
            self._registry.evict(instance_id)

        logger.info(
            "RemoveServiceInstance succeeded (instance_id=%s user=%s bucket=%s)",
            instance_id,
            record.user_name,
            record.bucket_name,
        )

    async def _suspend_user(self, user_name: str) -> None:
        try:
            await self._admin.suspend_user(user_name)
        except AdminAPIError as exc:
            if exc.status_code != HTTPStatus.NOT_FOUND:
                raise
            logger.info("RGW user not found, nothing to suspend (uid=%s)", user_name)

    async def _delete_bindings_quietly(self, instance_id: str) -> None:
        try:
            object_ids = await self._store.list_ids(binding_prefix(instance_id))
        except CredentialStoreError:
            logger.exception("Failed to list bindings of removed instance (instance_id=%s)", instance_id)
            return

        for object_id in object_ids:
            await self._delete_record_quietly(object_id)

    async def _delete_record_quietly(self, object_id: str) -> None:
        try:
            await self._store.delete(object_id)
        except CredentialStoreError:
            logger.exception("Failed to delete record %r; backend changes already applied", object_id)

    # -----------------
    # Bindings
    # -----------------

    async def bind(
        self,
        instance_id: str,
        binding_id: str,
        parameters: Optional[Mapping[str, Any]] = None,
    ) -> BindingCredentials:
        """Issue (or return the already issued) credentials for a binding.

        Raises:
            InstanceNotFoundError: if the instance is unknown.
        """

        logger.info("Bind called (instance_id=%s binding_id=%s)", instance_id, binding_id)
        if parameters:
            logger.debug("Ignoring bind parameters (instance_id=%s keys=%s)", instance_id, sorted(parameters))

        instance = await self.get_instance(instance_id)
        if instance is None:
            logger.error("Instance ID %r not found", instance_id)
            raise InstanceNotFoundError(f"Instance ID {instance_id!r} not found")

        async with self._registry.binding_lock(instance_id):
            existing = await self._find_binding(instance_id, binding_id)
            if existing is not None and existing.user_name == instance.user_name:
                logger.info("Binding exists, returning stored credentials (instance_id=%s binding_id=%s)", instance_id, binding_id)
                return existing.credentials()
            if existing is not None:
                # Left behind by an earlier instance with the same ID; its user is suspended.
                logger.warning(
                    "Replacing stale binding (instance_id=%s binding_id=%s old_user=%s)",
                    instance_id,
                    binding_id,
                    existing.user_name,
                )

            key = await self._mint_key(instance.user_name)
            binding = BindingRecord(
                instance_id=instance_id,
                binding_id=binding_id,
                access_key=key.access_key,
                secret_key=key.secret_key,
                user_name=instance.user_name,
                bucket_name=instance.bucket_name,
                endpoint=instance.endpoint,
            )

            try:
                await self._store.put(binding_object_id(instance_id, binding_id), binding)
            except CredentialStoreError:
                await self._revoke_key_quietly(instance.user_name, key.access_key)
                raise

        logger.info("Bind succeeded (instance_id=%s binding_id=%s)", instance_id, binding_id)
        return binding.credentials()

    async def _mint_key(self, user_name: str) -> RGWKey:
        attempts = self._config.key_create_attempts
        for attempt in range(1, attempts + 1):
            access_key = self._key_generator(self._config.access_key_length)
            try:
                return await self._admin.create_key(user_id=user_name, access_key=access_key)
            except AdminAPIError as exc:
                if exc.status_code != HTTPStatus.CONFLICT or attempt == attempts:
                    raise
                logger.warning("Access key collision, retrying (uid=%s attempt=%d)", user_name, attempt)

        raise BrokerServiceError(f"No access key could be created for user {user_name!r}")

    async def _revoke_key_quietly(self, user_name: str, access_key: str) -> None:
        try:
            await self._admin.remove_key(user_id=user_name, access_key=access_key)
        except AdminServiceError:
            logger.exception("Failed to revoke unrecorded access key (uid=%s access_key=%s)", user_name, access_key)

    async def unbind(self, instance_id: str, binding_id: str) -> None:
        """Revoke the binding's key. Unknown instances or bindings count as unbound."""

        logger.info("UnBind called (instance_id=%s binding_id=%s)", instance_id, binding_id)

        instance = await self._lookup_instance(instance_id)
        if instance is None:
            logger.info("Instance not found, nothing to unbind (instance_id=%s)", instance_id)
            return

        async with self._registry.binding_lock(instance_id):
            binding = await self._find_binding(instance_id, binding_id)
            if binding is None:
                logger.info("Binding not found, assuming unbound (instance_id=%s binding_id=%s)", instance_id, binding_id)
                return

            try:
                await self._admin.remove_key(user_id=binding.user_name, access_key=binding.access_key)
            except AdminAPIError as exc:
                if exc.status_code != HTTPStatus.NOT_FOUND:
                    raise
                logger.info("Access key already gone (uid=%s)", binding.user_name)

            await self._delete_record_quietly(binding_object_id(instance_id, binding_id))

        logger.info("UnBind succeeded (instance_id=%s binding_id=%s)", instance_id, binding_id)
