from typing import Annotated

from fastapi import Depends, Request

from app.obs.context import current_logger, current_request_id
from app.obs.logger import Logger
from app.service.example import Services


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_request_logger(request: Request) -> Logger:
    """Request logger bound by the pipeline, falling back to the app logger."""
    return current_logger(getattr(request.app.state, "logger", None))


def get_request_id() -> str:
    return current_request_id()


ServicesDep = Annotated[Services, Depends(get_services)]
LoggerDep = Annotated[Logger, Depends(get_request_logger)]
RequestIdDep = Annotated[str, Depends(get_request_id)]
