from __future__ import annotations

import logging

from rgw_broker.services.admin_service import RGWAdminService


logger = logging.getLogger(__name__)

GC_USER_DISPLAY_NAME = "RGW broker garbage collector"


class GCHandoffService:
    """Moves released buckets to the garbage-collector user.

    Buckets are not deleted when an instance is removed; they are relinked to a
    fixed GC identity and a separate sweep over that user's buckets reclaims them.
    """

    def __init__(self, *, admin: RGWAdminService, gc_user: str) -> None:
        if not gc_user:
            raise ValueError("gc_user must be provided")
        self._admin = admin
        self._gc_user = gc_user

    @property
    def gc_user(self) -> str:
        return self._gc_user

    async def ensure_gc_user(self) -> None:
        """Create the GC user if missing and lift its bucket quota."""

        await self._admin.create_user(
            user_id=self._gc_user,
            display_name=GC_USER_DISPLAY_NAME,
            generate_key=False,
            success_if_exists=True,
        )
        await self._admin.modify_user(user_id=self._gc_user, attr="max-buckets", value="-1")
        logger.info("GC user ready (uid=%s)", self._gc_user)

    async def hand_off(self, *, user_name: str, bucket_name: str) -> bool:
        """Transfer `bucket_name` from `user_name` to the GC user.

        Returns:
            True if ownership was transferred, False if there was nothing to do
            (bucket gone or already with the GC user) or the bucket is held by
            another user. An unowned bucket is linked to the GC user.
        """

        # bucket_id must be read before unlinking; the lookup goes through the owner.
        metadata = await self._admin.get_bucket_metadata(bucket_name)
        if metadata is None:
            logger.info("Bucket already gone, skipping GC handoff (bucket=%s)", bucket_name)
            return False

        if metadata.owner == self._gc_user:
            logger.info("Bucket already owned by GC user (bucket=%s)", bucket_name)
            return False

        if metadata.owner and metadata.owner != user_name:
            logger.warning(
                "Bucket owned by unexpected user, skipping GC handoff (bucket=%s owner=%s expected=%s)",
                bucket_name,
                metadata.owner,
                user_name,
            )
            return False

        if metadata.owner:
            await self._admin.unlink_bucket(user_id=user_name, bucket_name=bucket_name)
        else:
            # An earlier handoff stopped between unlink and link.
            logger.info("Bucket has no owner, relinking to GC user (bucket=%s)", bucket_name)

        await self._admin.link_bucket(
            user_id=self._gc_user,
            bucket_name=bucket_name,
            bucket_id=metadata.bucket_id,
        )
        logger.info(
            "Bucket handed off to GC user (bucket=%s bucket_id=%s from=%s to=%s)",
            bucket_name,
            metadata.bucket_id,
            user_name,
            self._gc_user,
        )
        return True
