from __future__ import annotations

from fastapi import APIRouter, Depends, Path
from fastapi.responses import JSONResponse
from starlette import status

from rgw_broker.models.broker import (
    BindRequest,
    BindResponse,
    CatalogResponse,
    EmptyResponse,
    LastOperationResponse,
    ProvisionRequest,
)
from rgw_broker.services.broker_service import BrokerService
from rgw_broker.services.dependencies import get_broker_service

router = APIRouter(prefix="/v2", tags=["broker"])


@router.get("/catalog", response_model=CatalogResponse)
async def catalog(broker: BrokerService = Depends(get_broker_service)) -> CatalogResponse:
    return broker.catalog()


@router.put(
    "/service_instances/{instance_id}",
    response_model=EmptyResponse,
    status_code=status.HTTP_201_CREATED,
)
async def provision(
    payload: ProvisionRequest,
    instance_id: str = Path(..., description="Service instance id"),
    broker: BrokerService = Depends(get_broker_service),
) -> EmptyResponse:
    namespace = payload.context.namespace if payload.context else None
    await broker.create_service_instance(instance_id, parameters=payload.parameters, namespace=namespace)
    return EmptyResponse()


@router.delete("/service_instances/{instance_id}", response_model=EmptyResponse)
async def deprovision(
    instance_id: str = Path(..., description="Service instance id"),
    broker: BrokerService = Depends(get_broker_service),
) -> EmptyResponse:
    await broker.remove_service_instance(instance_id)
    return EmptyResponse()


@router.get("/service_instances/{instance_id}/last_operation", response_model=LastOperationResponse)
async def last_operation(
    instance_id: str = Path(..., description="Service instance id"),
    broker: BrokerService = Depends(get_broker_service),
):
    # Every operation completes synchronously, so there is never one in progress.
    if await broker.get_instance(instance_id) is None:
        return JSONResponse(status_code=status.HTTP_410_GONE, content={})
    return LastOperationResponse(state="succeeded")


@router.put(
    "/service_instances/{instance_id}/service_bindings/{binding_id}",
    response_model=BindResponse,
    status_code=status.HTTP_201_CREATED,
)
async def bind(
    payload: BindRequest,
    instance_id: str = Path(..., description="Service instance id"),
    binding_id: str = Path(..., description="Service binding id"),
    broker: BrokerService = Depends(get_broker_service),
) -> BindResponse:
    credentials = await broker.bind(instance_id, binding_id, payload.parameters)
    return BindResponse(credentials=credentials)


@router.get(
    "/service_instances/{instance_id}/service_bindings/{binding_id}",
    response_model=BindResponse,
)
async def get_binding(
    instance_id: str = Path(..., description="Service instance id"),
    binding_id: str = Path(..., description="Service binding id"),
    broker: BrokerService = Depends(get_broker_service),
) -> BindResponse:
    credentials = await broker.get_binding(instance_id, binding_id)
    return BindResponse(credentials=credentials)


@router.delete(
    "/service_instances/{instance_id}/service_bindings/{binding_id}",
    response_model=EmptyResponse,
)
async def unbind(
    instance_id: str = Path(..., description="Service instance id"),
    binding_id: str = Path(..., description="Service binding id"),
    broker: BrokerService = Depends(get_broker_service),
) -> EmptyResponse:
    await broker.unbind(instance_id, binding_id)
    return EmptyResponse()
