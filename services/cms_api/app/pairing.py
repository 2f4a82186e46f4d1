"""Device pairing: issue short codes and activate devices."""

import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from common.auth.keycloak import Identity
from common.database.mongodb import MongoRecordStore

logger = logging.getLogger(__name__)

PENDING = "pending"
ACTIVE = "active"

CODE_BYTES = 4
DEFAULT_DEVICE_NAME = "New Device"


class PairingRejected(Exception):
    """Activation attempted without the pairing code or the owner's session."""

    def __init__(self, message: str = "Pairing code or owner session required"):
        super().__init__(message)
        self.message = message


class PairingExpired(Exception):
    """The pairing window of a pending device has closed."""

    def __init__(self, message: str = "Pairing code has expired"):
        super().__init__(message)
        self.message = message


def generate_code() -> str:
    """Return 8 uppercase hex characters (32 random bits)."""
    return secrets.token_hex(CODE_BYTES).upper()


def normalize_code(code: str) -> str:
    return code.strip().upper()


def _as_utc(value: datetime) -> datetime:
    # pymongo hands back naive datetimes that are already UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def is_expired(device: Dict[str, Any], ttl_seconds: int, now: Optional[datetime] = None) -> bool:
    """True when a device was created more than ``ttl_seconds`` ago."""
    created_at = device.get("created_at")
    if ttl_seconds <= 0 or created_at is None:
        return False
    now = now or datetime.now(timezone.utc)
    return now - _as_utc(created_at) > timedelta(seconds=ttl_seconds)


async def generate(
    store: MongoRecordStore,
    identity: Identity,
    device_name: Optional[str] = None,
    default_name: str = DEFAULT_DEVICE_NAME,
) -> Dict[str, Any]:
    """
    Create a pending device owned by ``identity`` with a fresh pairing code.

    A code collision is not retried; the store's unique index rejects it
    and the StoreError reaches the caller.

    Returns:
        dict: The stored device row
    """
    unique_code = generate_code()
    logger.debug(f"Generated pairing code {unique_code} for user {identity.id}")

    device = await store.insert("devices", {
        "owner_id": identity.id,
        "unique_code": unique_code,
        "device_name": device_name or default_name,
    })

    logger.info(f"Device created: id={device['device_id']}, owner={identity.id}, status={device['status']}")
    return device


async def confirm(
    store: MongoRecordStore,
    device_id: Optional[str] = None,
    unique_code: Optional[str] = None,
    identity: Optional[Identity] = None,
    ttl_seconds: int = 0,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Move a device from pending to active.

    The device is looked up by ``device_id``, ``unique_code`` or both. The
    caller must either present the device's pairing code or be its owner.
    Confirming an active device returns it unchanged.

    Raises:
        NotFoundError: If no device matches
        PairingRejected: If neither the code nor an owner session is given
        PairingExpired: If the device has been pending longer than ``ttl_seconds``
    """
    if not device_id and not unique_code:
        raise ValueError("device_id or unique_code is required")

    filters = {}
    if device_id:
        filters["device_id"] = device_id
    if unique_code:
        filters["unique_code"] = normalize_code(unique_code)

    device = await store.select_one("devices", **filters)

    owner_matches = identity is not None and identity.id == device["owner_id"]
    if not unique_code and not owner_matches:
        logger.warning(f"Rejected activation of device {device['device_id']}: no code or owner session")
        raise PairingRejected()

    if device["status"] == ACTIVE:
        return device

    now = now or datetime.now(timezone.utc)
    if is_expired(device, ttl_seconds, now):
        logger.info(f"Pairing window closed for device {device['device_id']}")
        raise PairingExpired()

    rows = await store.update(
        "devices",
        {"status": ACTIVE, "activated_at": now},
        device_id=device["device_id"],
        status=PENDING,
    )
    if not rows:
        # Another request activated it between the read and the update
        return await store.select_one("devices", device_id=device["device_id"])

    logger.info(f"Device activated: id={device['device_id']}, owner={device['owner_id']}")
    return rows[0]
