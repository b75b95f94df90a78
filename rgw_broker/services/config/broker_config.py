from __future__ import annotations

import os
from dataclasses import dataclass


def _int_from_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValueError(f"Invalid {name}; must be an integer") from exc
    if value <= 0:
        raise ValueError(f"Invalid {name}; must be positive")
    return value


@dataclass(frozen=True)
class BrokerConfig:
    """Tenant naming and bookkeeping settings for the broker.

    `provision_gc_user` is True when the GC user was not supplied externally,
    in which case the broker creates it on startup.
    """

    uid_prefix: str = "kube-rgw."
    gc_user: str = "rgw-kube-gc-user"
    data_bucket: str = "kube-rgw-data"
    access_key_length: int = 20
    key_create_attempts: int = 3
    provision_gc_user: bool = True

    @staticmethod
    def from_env() -> "BrokerConfig":
        gc_user = (os.getenv("RGW_GC_USER") or "").strip()

        return BrokerConfig(
            uid_prefix=os.getenv("RGW_UID_PREFIX", "kube-rgw."),
            gc_user=gc_user or "rgw-kube-gc-user",
            data_bucket=(os.getenv("RGW_DATA_BUCKET") or "").strip() or "kube-rgw-data",
            access_key_length=_int_from_env("RGW_ACCESS_KEY_LENGTH", 20),
            key_create_attempts=_int_from_env("RGW_KEY_CREATE_ATTEMPTS", 3),
            provision_gc_user=not gc_user,
        )
