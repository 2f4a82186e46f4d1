"""Health check implementations."""

import logging
from fastapi import status
from fastapi.responses import JSONResponse
from ..database.mongodb import MongoRecordStore

logger = logging.getLogger(__name__)


async def health_check(service_name: str = "unknown") -> JSONResponse:
    """
    Basic health check endpoint.

    Args:
        service_name: Name of the service

    Returns:
        JSONResponse: Health status
    """
    return JSONResponse(
        status_code=status.HTTP_200_OK,
        content={"status": "healthy", "service": service_name}
    )


async def readiness_check(store: MongoRecordStore) -> JSONResponse:
    """
    Readiness check - verifies the record store answers a ping.

    Returns:
        JSONResponse: Readiness status
    """
    checks = {}
    all_ready = True

    try:
        await store.ping()
        checks["mongodb"] = "ready"
    except Exception as e:
        logger.error(f"MongoDB readiness check failed: {e}")
        checks["mongodb"] = "not ready"
        all_ready = False

    status_code = status.HTTP_200_OK if all_ready else status.HTTP_503_SERVICE_UNAVAILABLE

    return JSONResponse(
        status_code=status_code,
        content={
            "status": "ready" if all_ready else "not ready",
            "checks": checks
        }
    )


async def liveness_check() -> JSONResponse:
    """Liveness check - verifies service is alive."""
    return JSONResponse(
        status_code=status.HTTP_200_OK,
        content={"status": "alive"}
    )
