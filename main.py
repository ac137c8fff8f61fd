import os
import signal
import sys
import threading

from dotenv import load_dotenv

from app.application import start_web_server
from app.config import ConfigError, load_config
from app.obs.logger import InvalidSinkError, Logger


def install_signal_handlers(shutdown: threading.Event) -> None:
    def _handle(signum, frame):
        shutdown.set()

    signal.signal(signal.SIGINT, _handle)
    signal.signal(signal.SIGTERM, _handle)


def run(config_dir: str = "config", shutdown: threading.Event = None) -> int:
    """Start the service and block until SIGINT/SIGTERM. Returns the exit code."""
    try:
        settings = load_config(config_dir)
    except ConfigError as e:
        Logger.default().error("failed to load config", error=str(e))
        return 1

    try:
        app_logger = Logger.create(settings.logger)
    except InvalidSinkError as e:
        Logger.default().error("failed to initialize logger", error=str(e))
        return 1

    if shutdown is None:
        shutdown = threading.Event()
        install_signal_handlers(shutdown)

    try:
        start_web_server(settings, app_logger, shutdown)
    except Exception as e:
        app_logger.with_error(e).fatal("failed to start server")
    finally:
        app_logger.close()

    return 0


def main() -> None:
    load_dotenv()
    sys.exit(run(os.getenv("APP_CONFIG_DIR", "config")))


if __name__ == "__main__":
    main()
