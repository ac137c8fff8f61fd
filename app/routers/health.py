"""Liveness and readiness probes."""

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from app.routers.deps import LoggerDep, RequestIdDep, ServicesDep

router = APIRouter()


@router.get("/healthz")
def healthz(logger: LoggerDep, request_id: RequestIdDep):
    logger.with_component("health").with_operation("healthz").debug("Health check requested")
    return {"status": "ok", "request_id": request_id}


@router.get("/readyz")
def readyz(services: ServicesDep, logger: LoggerDep, request_id: RequestIdDep):
    """Ready when the database answers a ping."""
    log = logger.with_component("health").with_operation("readyz")
    log.debug("Readiness check requested")

    try:
        services.health.ping()
    except Exception as e:
        log.with_error(e).error("Readiness check failed")
        return JSONResponse(
            {"status": "not ready", "error": str(e), "request_id": request_id},
            status_code=503,
        )

    log.debug("Readiness check passed")
    return {"status": "ready", "request_id": request_id}
