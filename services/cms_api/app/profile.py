"""Profile updates across the record store and the directory."""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from common.auth.keycloak import AuthError, Identity, KeycloakDirectory
from common.database.mongodb import MongoRecordStore, NotFoundError, StoreError

logger = logging.getLogger(__name__)


@dataclass
class ProfileUpdate:
    """
    Outcome of a profile update.

    ``row`` is the stored profile and is authoritative. ``metadata_synced``
    is False when the directory copy could not be updated; the two then
    disagree until the next successful update.
    """
    row: Dict[str, Any]
    metadata_synced: bool


def merge_metadata(
    identity: Identity,
    current: Optional[Dict[str, Any]] = None,
    full_name: Optional[str] = None,
    avatar_url: Optional[str] = None,
) -> Dict[str, str]:
    """Fill missing fields from the stored profile, then from the token claims."""
    current = current or {}
    return {
        "full_name": full_name or current.get("full_name") or identity.full_name or "",
        "avatar_url": avatar_url or current.get("avatar_url") or identity.avatar_url or "",
    }


async def get_or_create_profile(store: MongoRecordStore, identity: Identity) -> Dict[str, Any]:
    """
    Return the caller's profile row, creating it from the identity if absent.

    A row can be missing when signup created the directory user but the
    profile insert failed.
    """
    try:
        return await store.select_one("users", id=identity.id)
    except NotFoundError:
        logger.warning(f"No profile row for user {identity.id}, creating one")

    try:
        return await store.insert("users", {
            "id": identity.id,
            "email": identity.email,
            "full_name": identity.full_name or "",
            "avatar_url": identity.avatar_url or "",
        })
    except StoreError:
        # A concurrent request may have created it first
        return await store.select_one("users", id=identity.id)


async def update_profile(
    store: MongoRecordStore,
    directory: KeycloakDirectory,
    identity: Identity,
    full_name: Optional[str] = None,
    avatar_url: Optional[str] = None,
) -> ProfileUpdate:
    """
    Update the caller's profile row, then mirror it to the directory.

    Token claims are only as fresh as the last login, so omitted fields
    keep the stored values.

    Raises:
        StoreError: If the profile row could not be read or written
    """
    current = await get_or_create_profile(store, identity)
    metadata = merge_metadata(identity, current, full_name, avatar_url)

    rows = await store.update("users", metadata, id=identity.id)
    if not rows:
        raise NotFoundError(f"No profile for user {identity.id}")

    try:
        await directory.update_user_metadata(identity.id, metadata)
    except AuthError as e:
        logger.warning(f"Profile saved but directory metadata update failed for {identity.id}: {e.message}")
        return ProfileUpdate(row=rows[0], metadata_synced=False)

    return ProfileUpdate(row=rows[0], metadata_synced=True)
