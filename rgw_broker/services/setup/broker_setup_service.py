from __future__ import annotations

import logging

from rgw_broker.services.broker_service import BrokerService
from rgw_broker.services.config import BrokerConfig
from rgw_broker.services.gc_handoff_service import GCHandoffService
from rgw_broker.services.s3_service import S3Service


logger = logging.getLogger(__name__)


class BrokerSetupService:
    """Startup provisioning for the broker.

    Steps, all idempotent:
    1) Create the GC user (unless RGW_GC_USER names an externally managed one).
    2) Create the data bucket that holds instance and binding records.
    3) Warm the instance registry from the stored records.
    """

    def __init__(
        self,
        config: BrokerConfig,
        *,
        s3: S3Service,
        gc: GCHandoffService,
        broker: BrokerService,
    ) -> None:
        self._config = config
        self._s3 = s3
        self._gc = gc
        self._broker = broker

    async def setup_broker_environment(self) -> None:
        if self._config.provision_gc_user:
            await self._gc.ensure_gc_user()
        else:
            logger.info("Using externally managed GC user (uid=%s)", self._config.gc_user)

        await self._setup_data_bucket()
        await self._broker.rebuild_registry()

    async def _setup_data_bucket(self) -> None:
        bucket = self._config.data_bucket
        if bucket in await self._s3.list_buckets():
            logger.info("Data bucket present (bucket=%s)", bucket)
            return

        created = await self._s3.make_bucket(bucket=bucket)
        logger.info("Data bucket %s (bucket=%s)", "created" if created else "already owned", bucket)
