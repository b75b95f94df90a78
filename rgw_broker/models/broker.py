from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from rgw_broker.models.records import BindingCredentials


class ServicePlan(BaseModel):
    id: str
    name: str
    description: str
    free: bool = True


class ServiceOffering(BaseModel):
    id: str
    name: str
    description: str
    bindable: bool = True
    plans: list[ServicePlan]


class CatalogResponse(BaseModel):
    services: list[ServiceOffering]


class ProvisionParameters(BaseModel):
    """Recognized provisioning parameters; anything else is ignored."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    bucket_name: Optional[str] = Field(default=None, alias="bucketName")


class ProvisionContext(BaseModel):
    model_config = ConfigDict(extra="ignore")

    namespace: Optional[str] = None


class ProvisionRequest(BaseModel):
    service_id: Optional[str] = None
    plan_id: Optional[str] = None
    parameters: ProvisionParameters = Field(default_factory=ProvisionParameters)
    context: Optional[ProvisionContext] = None


class BindRequest(BaseModel):
    service_id: Optional[str] = None
    plan_id: Optional[str] = None
    parameters: dict[str, Any] = Field(default_factory=dict)


class BindResponse(BaseModel):
    credentials: BindingCredentials


class LastOperationResponse(BaseModel):
    state: str
    description: Optional[str] = None


class EmptyResponse(BaseModel):
    pass
