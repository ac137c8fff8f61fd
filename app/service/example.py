from dataclasses import dataclass
from typing import Protocol
import time

from app.obs.logger import Logger
from app.repository.example import (
    ExampleRepositoryProtocol,
    HealthRepositoryProtocol,
    Repositories,
)


class ExampleServiceProtocol(Protocol):
    def example_method(self) -> None: ...


class HealthServiceProtocol(Protocol):
    def ping(self) -> None: ...


class ExampleService:
    def __init__(self, repo: ExampleRepositoryProtocol, logger: Logger):
        self.repo = repo
        self.logger = logger.with_component("service")

    def example_method(self) -> None:
        start = time.monotonic()
        try:
            self.repo.example_method()
        except Exception as e:
            self.logger.log_business("example_method", time.monotonic() - start, e)
            raise
        self.logger.log_business("example_method", time.monotonic() - start)


class HealthService:
    def __init__(self, repo: HealthRepositoryProtocol):
        self.repo = repo

    def ping(self) -> None:
        self.repo.ping()


@dataclass(frozen=True)
class Services:
    example: ExampleServiceProtocol
    health: HealthServiceProtocol

    @classmethod
    def from_repositories(cls, repos: Repositories, logger: Logger) -> "Services":
        return cls(
            example=ExampleService(repos.example, logger),
            health=HealthService(repos.health),
        )
