from __future__ import annotations

import asyncio
import json
import logging
import secrets
import string
from dataclasses import dataclass
from http import HTTPStatus
from typing import Any, Callable, Mapping, Optional, Sequence, TypeVar
from urllib.parse import quote, urlencode

import aiohttp
from botocore.auth import S3SigV4Auth
from botocore.awsrequest import AWSRequest
from botocore.credentials import Credentials
from botocore.exceptions import BotoCoreError
from yarl import URL

from rgw_broker.services.config import RGWConfig


logger = logging.getLogger(__name__)

ACCESS_KEY_ALPHABET = string.ascii_uppercase + string.digits

T = TypeVar("T")


class AdminServiceError(RuntimeError):
    pass


class AdminAPIError(AdminServiceError):
    """Non-2xx response from the RGW admin API."""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code


class SigningError(AdminServiceError):
    pass


class UnmarshalError(AdminServiceError):
    pass


@dataclass(frozen=True)
class RGWKey:
    user: str
    access_key: str
    secret_key: str

    @staticmethod
    def from_admin(obj: Mapping[str, Any]) -> "RGWKey":
        return RGWKey(
            user=str(obj.get("user") or ""),
            access_key=str(obj["access_key"]),
            secret_key=str(obj.get("secret_key") or ""),
        )


@dataclass(frozen=True)
class RGWUser:
    user_id: str
    display_name: str = ""
    suspended: bool = False
    max_buckets: Optional[int] = None
    keys: tuple[RGWKey, ...] = ()

    @staticmethod
    def from_admin(obj: Mapping[str, Any]) -> "RGWUser":
        max_buckets = obj.get("max_buckets")
        return RGWUser(
            user_id=str(obj["user_id"]),
            display_name=str(obj.get("display_name") or ""),
            suspended=bool(obj.get("suspended")),
            max_buckets=int(max_buckets) if max_buckets is not None else None,
            keys=tuple(RGWKey.from_admin(k) for k in obj.get("keys") or []),
        )

    def own_key(self) -> Optional[RGWKey]:
        """First S3 key belonging to the user itself (not a subuser)."""

        for key in self.keys:
            if key.user in ("", self.user_id) and key.secret_key:
                return key
        return None


@dataclass(frozen=True)
class BucketMetadata:
    name: str
    bucket_id: str
    owner: str

    @staticmethod
    def from_admin(obj: Mapping[str, Any]) -> "BucketMetadata":
        # {"key": "bucket:<name>", "data": {"bucket": {"name", "bucket_id", ...}, "owner": "<uid>", ...}}
        data = obj["data"]
        bucket = data["bucket"]
        return BucketMetadata(
            name=str(bucket["name"]),
            bucket_id=str(bucket["bucket_id"]),
            owner=str(data.get("owner") or ""),
        )


def generate_access_key(length: int = 20) -> str:
    if length <= 0:
        raise ValueError("length must be positive")
    return "".join(secrets.choice(ACCESS_KEY_ALPHABET) for _ in range(length))


def _flag(value: bool) -> str:
    return "True" if value else "False"


class RGWAdminService:
    """Client for the RGW admin API (`/admin/<section>`).

    Requests are signed with the broker's master credentials using the S3 flavour
    of SigV4 and sent over a shared aiohttp session. Each call has a fixed total
    timeout and is never retried here; callers retry whole lifecycle operations.
    """

    def __init__(self, config: RGWConfig, *, session: aiohttp.ClientSession) -> None:
        self._config = config
        self._session = session

    @property
    def endpoint(self) -> str:
        return self._config.endpoint

    def _admin_url(
        self,
        *,
        section: str,
        resource: Optional[str] = None,
        params: Optional[Mapping[str, str]] = None,
    ) -> str:
        query: dict[str, str] = {"format": "json"}
        if params:
            query.update({k: str(v) for k, v in params.items()})

        # Encode everything outside the unreserved set so the canonical query
        # string we sign is the one RGW recomputes.
        encoded = urlencode(query, quote_via=quote, safe="")
        prefix = f"{resource}&" if resource else ""
        return f"{self._config.endpoint}/admin/{section.strip('/')}?{prefix}{encoded}"

    def _signed_headers(self, *, method: str, url: str, body: Optional[bytes]) -> dict[str, str]:
        if not self._config.access_key or not self._config.secret_key:
            raise SigningError("No RGW admin credentials available for request signing")

        credentials = Credentials(self._config.access_key, self._config.secret_key)
        aws_request = AWSRequest(method=method, url=url, data=body, headers={"Accept": "application/json"})
        try:
            S3SigV4Auth(credentials, "s3", self._config.region_name).add_auth(aws_request)
        except BotoCoreError as exc:
            raise SigningError(f"Failed to sign RGW admin request ({method} {url})") from exc

        headers = dict(aws_request.prepare().headers)
        if not any(name.lower() == "authorization" for name in headers):
            raise SigningError(f"No authorization header attached to RGW admin request ({method} {url})")
        return headers

    async def _signed_request(
        self,
        *,
        method: str,
        url: str,
        body: Optional[bytes] = None,
    ) -> tuple[int, bytes]:
        headers = self._signed_headers(method=method, url=url, body=body)
        timeout = aiohttp.ClientTimeout(total=self._config.timeout_seconds)

        try:
            # encoded=True: send exactly the query string that was signed.
            async with self._session.request(
                method,
                URL(url, encoded=True),
                data=body,
                headers=headers,
                timeout=timeout,
            ) as resp:
                return (resp.status, await resp.read() or b"")
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            logger.exception("RGW admin request failed (method=%s url=%s)", method, url)
            raise AdminServiceError(f"RGW admin request failed ({method} {url})") from exc

    @staticmethod
    def _error_details(payload: bytes) -> str:
        if not payload:
            return ""
        try:
            parsed = json.loads(payload.decode("utf-8"))
        except (ValueError, UnicodeDecodeError):
            return payload.decode("utf-8", errors="replace")[:200]
        if isinstance(parsed, dict) and parsed.get("Code"):
            return str(parsed["Code"])
        return ""

    async def do_admin_request(
        self,
        *,
        method: str,
        section: str,
        resource: Optional[str] = None,
        params: Optional[Mapping[str, str]] = None,
        accept_statuses: Sequence[int] = (),
    ) -> tuple[bytes, int]:
        """Send one signed admin request and return `(body, status)`.

        Raises:
            SigningError: if no authorization could be attached.
            AdminAPIError: for a non-2xx status not listed in `accept_statuses`.
            AdminServiceError: for transport failures and timeouts.
        """

        method = method.upper()
        url = self._admin_url(section=section, resource=resource, params=params)
        status, payload = await self._signed_request(method=method, url=url)

        if 200 <= status < 300 or status in accept_statuses:
            return (payload, status)

        details = self._error_details(payload)
        raise AdminAPIError(
            status,
            f"RGW admin request failed ({method} /admin/{section}) HTTP {status} {details}".strip(),
        )

    @staticmethod
    def _decode(payload: bytes, *, what: str) -> Any:
        try:
            return json.loads(payload.decode("utf-8"))
        except (ValueError, UnicodeDecodeError) as exc:
            raise UnmarshalError(f"Malformed RGW admin response for {what}") from exc

    def _decode_record(self, payload: bytes, factory: Callable[[Any], T], *, what: str) -> T:
        parsed = self._decode(payload, what=what)
        try:
            return factory(parsed)
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            raise UnmarshalError(f"Unexpected RGW admin response shape for {what}") from exc

    # -----------------
    # Users
    # -----------------

    async def create_user(
        self,
        *,
        user_id: str,
        display_name: str,
        generate_key: bool = True,
        success_if_exists: bool = True,
    ) -> RGWUser:
        """Create a user; with `success_if_exists`, an existing user is returned as-is."""

        payload, status = await self.do_admin_request(
            method="PUT",
            section="user",
            params={"uid": user_id, "display-name": display_name, "generate-key": _flag(generate_key)},
            accept_statuses=(HTTPStatus.CONFLICT,) if success_if_exists else (),
        )
        if status == HTTPStatus.CONFLICT:
            logger.info("RGW user already exists, reusing (uid=%s)", user_id)
            return await self.get_user(user_id)

        return self._decode_record(payload, RGWUser.from_admin, what=f"user {user_id}")

    async def get_user(self, user_id: str) -> RGWUser:
        payload, _ = await self.do_admin_request(method="GET", section="user", params={"uid": user_id})
        return self._decode_record(payload, RGWUser.from_admin, what=f"user {user_id}")

    async def modify_user(self, *, user_id: str, attr: str, value: str) -> RGWUser:
        payload, _ = await self.do_admin_request(
            method="POST",
            section="user",
            params={"uid": user_id, attr: value},
        )
        return self._decode_record(payload, RGWUser.from_admin, what=f"user {user_id}")

    async def suspend_user(self, user_id: str) -> RGWUser:
        return await self.modify_user(user_id=user_id, attr="suspended", value="true")

    # -----------------
    # Keys
    # -----------------

    async def create_key(self, *, user_id: str, access_key: str) -> RGWKey:
        """Add an S3 key with the given access key id; RGW generates the secret.

        RGW answers 409 when the access key id is already in use, which surfaces
        here as `AdminAPIError(status_code=409)`.
        """

        payload, _ = await self.do_admin_request(
            method="PUT",
            section="user",
            resource="key",
            params={"uid": user_id, "key-type": "s3", "access-key": access_key, "generate-key": "True"},
        )

        keys = self._decode_record(
            payload,
            lambda obj: [RGWKey.from_admin(k) for k in obj],
            what=f"keys of user {user_id}",
        )
        for key in keys:
            if key.access_key == access_key:
                return key

        raise UnmarshalError(f"RGW did not return the created key (uid={user_id}, access_key={access_key})")

    async def remove_key(self, *, user_id: str, access_key: str) -> None:
        await self.do_admin_request(
            method="DELETE",
            section="user",
            resource="key",
            params={"uid": user_id, "key-type": "s3", "access-key": access_key},
        )

    # -----------------
    # Buckets
    # -----------------

    async def get_bucket_metadata(self, bucket_name: str) -> Optional[BucketMetadata]:
        """Return the bucket's id and current owner, or None if the bucket is absent."""

        payload, status = await self.do_admin_request(
            method="GET",
            section="metadata",
            params={"key": f"bucket:{bucket_name}"},
            accept_statuses=(HTTPStatus.NOT_FOUND,),
        )
        if status == HTTPStatus.NOT_FOUND:
            return None

        return self._decode_record(payload, BucketMetadata.from_admin, what=f"bucket {bucket_name}")

    async def unlink_bucket(self, *, user_id: str, bucket_name: str) -> None:
        await self.do_admin_request(
            method="POST",
            section="bucket",
            params={"uid": user_id, "bucket": bucket_name},
        )

    async def link_bucket(self, *, user_id: str, bucket_name: str, bucket_id: str) -> None:
        await self.do_admin_request(
            method="PUT",
            section="bucket",
            params={"uid": user_id, "bucket": bucket_name, "bucket-id": bucket_id},
        )
