from fastapi import FastAPI
from fastapi.responses import PlainTextResponse

from app.obs.logger import Logger
from app.obs.middleware import install_pipeline
from app.routers import example, health
from app.service.example import Services


def create_app(services: Services, logger: Logger, version: str = "1.0.0") -> FastAPI:
    logger.with_component("handler").info("Initializing handlers")

    app = FastAPI(title="Service Template", version=version)
    app.state.services = services
    app.state.logger = logger

    install_pipeline(app, logger)

    @app.get("/ping", response_class=PlainTextResponse)
    def ping():
        return "pong"

    app.include_router(health.router, tags=["Health"])
    app.include_router(health.router, prefix="/api/v1", tags=["Health"])
    app.include_router(example.router, prefix="/api/v1/example", tags=["Example"])

    return app
