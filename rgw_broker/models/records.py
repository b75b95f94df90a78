from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class InstanceState(str, Enum):
    PROVISIONING = "provisioning"
    ACTIVE = "active"


class ServiceInstanceRecord(BaseModel):
    """Persisted state of one provisioned tenant (stored as `instance/<id>`)."""

    instance_id: str
    namespace: Optional[str] = None
    endpoint: str
    user_name: str
    bucket_name: str
    state: InstanceState = InstanceState.ACTIVE

    @property
    def is_active(self) -> bool:
        return self.state == InstanceState.ACTIVE


class BindingCredentials(BaseModel):
    """Credential set handed to a bound application."""

    model_config = ConfigDict(populate_by_name=True)

    user_name: str = Field(..., alias="userName")
    bucket_name: str = Field(..., alias="bucketName")
    endpoint: str
    access_key: str = Field(..., alias="accessKey")
    secret_key: str = Field(..., alias="secretKey")


class BindingRecord(BaseModel):
    """Persisted binding (stored as `bind/<instance_id>/<binding_id>`)."""

    instance_id: str
    binding_id: str
    access_key: str
    secret_key: str
    user_name: str
    bucket_name: str
    endpoint: str

    def credentials(self) -> BindingCredentials:
        return BindingCredentials(
            user_name=self.user_name,
            bucket_name=self.bucket_name,
            endpoint=self.endpoint,
            access_key=self.access_key,
            secret_key=self.secret_key,
        )
