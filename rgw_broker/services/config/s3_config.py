from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Optional

from rgw_broker.services.config.rgw_config import RGWConfig


@dataclass(frozen=True)
class S3Config:
    endpoint_url: str
    access_key: str
    secret_key: str
    region_name: Optional[str] = None
    timeout_seconds: float = 30.0

    @staticmethod
    def from_rgw(config: RGWConfig) -> "S3Config":
        return S3Config(
            endpoint_url=config.endpoint,
            access_key=config.access_key,
            secret_key=config.secret_key,
            region_name=config.region_name,
            timeout_seconds=config.timeout_seconds,
        )

    def for_credentials(self, *, access_key: str, secret_key: str) -> "S3Config":
        """Same endpoint, different identity (e.g. a tenant user)."""

        return replace(self, access_key=access_key, secret_key=secret_key)
