from fastapi import APIRouter
from fastapi.responses import JSONResponse

from app.routers.deps import LoggerDep, RequestIdDep, ServicesDep

router = APIRouter()


@router.get("/")
def example_endpoint(services: ServicesDep, logger: LoggerDep, request_id: RequestIdDep):
    log = logger.with_component("api").with_operation("example_endpoint")
    log.info("Processing example request")

    try:
        services.example.example_method()
    except Exception as e:
        log.with_error(e).error("Example method failed")
        return JSONResponse({"error": str(e), "request_id": request_id}, status_code=500)

    log.info("Example request completed successfully")
    return {"status": "ok", "request_id": request_id}
