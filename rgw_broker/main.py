from contextlib import asynccontextmanager
import logging

import aiohttp
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette import status

from rgw_broker.routes.broker import router as broker_router
from rgw_broker.services.admin_service import AdminServiceError
from rgw_broker.services.broker_service import (
    BindingNotFoundError,
    BrokerServiceError,
    BucketUnavailableError,
    InstanceAlreadyExistsError,
    InstanceNotFoundError,
)
from rgw_broker.services.config import BrokerConfig, RGWConfig
from rgw_broker.services.credential_store import CredentialStoreError
from rgw_broker.services.dependencies import build_broker_services
from rgw_broker.services.s3_service import S3ServiceError


logger = logging.getLogger(__name__)


def _ensure_logging() -> None:
    formatter = logging.Formatter("%(levelname)s: %(name)s: %(message)s")
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(name)s: %(message)s")
    else:
        root.setLevel(logging.INFO)
        for handler in root.handlers:
            handler.setFormatter(formatter)


@asynccontextmanager
async def lifespan(app: FastAPI):
    _ensure_logging()
    rgw_config = RGWConfig.from_env()
    broker_config = BrokerConfig.from_env()
    logger.info("Starting RGW broker (endpoint=%s data_bucket=%s)", rgw_config.endpoint, broker_config.data_bucket)

    async with aiohttp.ClientSession() as session:
        broker, setup = build_broker_services(
            session=session,
            rgw_config=rgw_config,
            broker_config=broker_config,
        )
        app.state.broker_service = broker
        await setup.setup_broker_environment()
        yield


app = FastAPI(lifespan=lifespan)

app.include_router(broker_router)


def _error_response(status_code: int, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"description": str(exc)})


@app.exception_handler(InstanceAlreadyExistsError)
async def instance_exists_handler(request: Request, exc: InstanceAlreadyExistsError) -> JSONResponse:
    return _error_response(status.HTTP_409_CONFLICT, exc)


@app.exception_handler(BucketUnavailableError)
async def bucket_unavailable_handler(request: Request, exc: BucketUnavailableError) -> JSONResponse:
    return _error_response(status.HTTP_409_CONFLICT, exc)


@app.exception_handler(InstanceNotFoundError)
async def instance_not_found_handler(request: Request, exc: InstanceNotFoundError) -> JSONResponse:
    return _error_response(status.HTTP_404_NOT_FOUND, exc)


@app.exception_handler(BindingNotFoundError)
async def binding_not_found_handler(request: Request, exc: BindingNotFoundError) -> JSONResponse:
    return _error_response(status.HTTP_404_NOT_FOUND, exc)


@app.exception_handler(BrokerServiceError)
@app.exception_handler(AdminServiceError)
@app.exception_handler(CredentialStoreError)
@app.exception_handler(S3ServiceError)
async def backend_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Map backend failures to a consistent HTTP response.

    The platform retries failed calls, so the description carries the instance,
    user or bucket involved without exposing response bodies from RGW.

    Returns:
        502 Bad Gateway with a JSON body: {"description": "..."}
    """
    return _error_response(status.HTTP_502_BAD_GATEWAY, exc)
