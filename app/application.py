"""Wires config, database, layers and the HTTP server together."""

import threading
from typing import Callable, Optional

from app.config import DatabaseSettings, Settings
from app.handler import create_app
from app.infrastructure.postgres import Postgres
from app.infrastructure.server import Server
from app.obs.logger import Logger
from app.repository.example import Repositories
from app.service.example import Services


def start_web_server(
    settings: Settings,
    logger: Logger,
    shutdown: threading.Event,
    connect_db: Optional[Callable[[DatabaseSettings], Postgres]] = None,
) -> None:
    """Run until ``shutdown`` is set. Raises if the database is unreachable."""
    logger.with_component("app").info("Initializing web server")

    db_log = logger.with_component("database")
    db_log.info("Connecting to database")
    try:
        pg = (connect_db or Postgres.connect)(settings.database)
    except Exception as e:
        db_log.with_error(e).error("Failed to initialize database connection")
        raise
    db_log.info("Database connection established")

    try:
        logger.with_component("repository").info("Initializing repositories")
        repos = Repositories.from_postgres(pg, logger)

        logger.with_component("service").info("Initializing services")
        services = Services.from_repositories(repos, logger)

        app = create_app(services, logger, version=settings.logger.version)

        server_log = logger.with_component("server")
        server_log.info("Initializing HTTP server")
        srv = Server(settings.http, app, logger)

        server_log.info("Starting HTTP server", host=settings.http.host, port=settings.http.port)
        srv.start()
        try:
            server_log.info("HTTP server started successfully")
            shutdown.wait()
            logger.with_component("app").info("Received shutdown signal")
        finally:
            server_log.info("Stopping HTTP server")
            srv.stop()
    finally:
        db_log.info("Closing database connection")
        pg.close()
