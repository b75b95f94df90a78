from __future__ import annotations

import aiohttp
from fastapi import FastAPI, Request

from rgw_broker.services.admin_service import RGWAdminService
from rgw_broker.services.broker_service import BrokerService
from rgw_broker.services.config import BrokerConfig, RGWConfig, S3Config
from rgw_broker.services.credential_store import CredentialStore
from rgw_broker.services.gc_handoff_service import GCHandoffService
from rgw_broker.services.s3_service import S3Service
from rgw_broker.services.setup.broker_setup_service import BrokerSetupService


def build_broker_services(
    *,
    session: aiohttp.ClientSession,
    rgw_config: RGWConfig,
    broker_config: BrokerConfig,
) -> tuple[BrokerService, BrokerSetupService]:
    """Wire the broker and its startup setup helper from configuration."""

    admin = RGWAdminService(rgw_config, session=session)
    s3 = S3Service(S3Config.from_rgw(rgw_config))
    store = CredentialStore(s3=s3, bucket_name=broker_config.data_bucket)
    gc = GCHandoffService(admin=admin, gc_user=broker_config.gc_user)

    broker = BrokerService(broker_config, admin=admin, s3=s3, store=store, gc=gc)
    setup = BrokerSetupService(broker_config, s3=s3, gc=gc, broker=broker)
    return broker, setup


def get_broker_service_from_app(app: FastAPI) -> BrokerService:
    """Provider for non-request contexts (e.g. app lifespan startup)."""

    broker = getattr(app.state, "broker_service", None)
    if broker is None:
        raise RuntimeError("Broker service not initialized (app.state.broker_service)")
    if not isinstance(broker, BrokerService):
        raise RuntimeError("Unexpected broker_service type")
    return broker


def get_broker_service(request: Request) -> BrokerService:
    """FastAPI dependency provider for the process-wide BrokerService."""

    return get_broker_service_from_app(request.app)
