from __future__ import annotations

import os
from dataclasses import dataclass
from typing import ClassVar


@dataclass(frozen=True)
class RGWConfig:
    """Connection settings for the RGW admin API and S3 data plane.

    `endpoint` always carries a scheme, e.g. "http://rgw.storage.svc:8000".
    A value supplied without one is treated as plain HTTP.
    """

    endpoint: str
    access_key: str
    secret_key: str
    region_name: str = "us-east-1"
    _DEFAULT_TIMEOUT_SECONDS: ClassVar[float] = 30.0
    timeout_seconds: float = _DEFAULT_TIMEOUT_SECONDS

    @staticmethod
    def _normalize_endpoint(endpoint: str) -> str:
        cleaned = endpoint.strip().rstrip("/")
        if "://" not in cleaned:
            cleaned = f"http://{cleaned}"
        return cleaned

    @staticmethod
    def from_env() -> "RGWConfig":
        endpoint = os.getenv("RGW_ENDPOINT")
        if not endpoint or not endpoint.strip():
            raise ValueError("Missing required environment variable: RGW_ENDPOINT")

        access_key = os.getenv("RGW_ACCESS_KEY")
        if not access_key:
            raise ValueError("Missing required environment variable: RGW_ACCESS_KEY")

        secret_key = os.getenv("RGW_SECRET")
        if not secret_key:
            raise ValueError("Missing required environment variable: RGW_SECRET")

        region_name = os.getenv("RGW_REGION") or "us-east-1"

        timeout_raw = os.getenv("RGW_TIMEOUT_SECONDS")
        timeout_seconds = RGWConfig._DEFAULT_TIMEOUT_SECONDS
        if timeout_raw:
            try:
                timeout_seconds = float(timeout_raw)
            except ValueError as exc:
                raise ValueError("Invalid RGW_TIMEOUT_SECONDS; must be a number") from exc
            if timeout_seconds <= 0:
                raise ValueError("Invalid RGW_TIMEOUT_SECONDS; must be positive")

        return RGWConfig(
            endpoint=RGWConfig._normalize_endpoint(endpoint),
            access_key=access_key,
            secret_key=secret_key,
            region_name=region_name,
            timeout_seconds=timeout_seconds,
        )
