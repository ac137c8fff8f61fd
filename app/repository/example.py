"""Repositories backed by the Postgres pool.

Driver errors are returned to callers unmodified.
"""

from dataclasses import dataclass
from typing import Protocol
import time

from app.infrastructure.postgres import Postgres
from app.obs.logger import Logger


class ExampleRepositoryProtocol(Protocol):
    def example_method(self) -> None: ...


class HealthRepositoryProtocol(Protocol):
    def ping(self) -> None: ...


class ExampleRepository:
    def __init__(self, pg: Postgres):
        self.pg = pg

    def example_method(self) -> None:
        return None


class HealthRepository:
    def __init__(self, pg: Postgres, logger: Logger):
        self.pg = pg
        self.logger = logger.with_component("repository")

    def ping(self) -> None:
        start = time.monotonic()
        try:
            self.pg.ping()
        except Exception as e:
            self.logger.log_database("ping", "", time.monotonic() - start, e)
            raise
        self.logger.log_database("ping", "", time.monotonic() - start)


@dataclass(frozen=True)
class Repositories:
    example: ExampleRepositoryProtocol
    health: HealthRepositoryProtocol

    @classmethod
    def from_postgres(cls, pg: Postgres, logger: Logger) -> "Repositories":
        return cls(
            example=ExampleRepository(pg),
            health=HealthRepository(pg, logger),
        )
