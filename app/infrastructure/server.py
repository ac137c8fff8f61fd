"""HTTP server lifecycle around uvicorn.

The listener runs on its own thread so ``start()`` hands control back to the
caller immediately. ``stop()`` asks uvicorn to shut down, which stops
accepting, lets in-flight requests finish within ``shutdown_timeout`` and then
cancels whatever is left.
"""

import asyncio
import threading
import time
from enum import Enum
from typing import Optional

import uvicorn

from app.config import HttpSettings
from app.obs.logger import Logger
from app.obs.middleware import ASGIApp, Message, Receive, Scope, Send


READ_TIMEOUT = 10.0
WRITE_TIMEOUT = 15.0
IDLE_TIMEOUT = 60
# uvicorn parses headers before the ASGI app sees the request and exposes no
# deadline for it; kept for parity with the other limits.
READ_HEADER_TIMEOUT = 5.0
SHUTDOWN_TIMEOUT = 5.0


class ServerState(Enum):
    STOPPED = "stopped"
    RUNNING = "running"
    STOPPING = "stopping"


class DeadlineMiddleware:
    """Per-request read and write deadlines, measured from request start."""

    def __init__(self, app: ASGIApp, read_timeout: float = READ_TIMEOUT, write_timeout: float = WRITE_TIMEOUT):
        self.app = app
        self.read_timeout = read_timeout
        self.write_timeout = write_timeout

    async def __call__(self, scope: Scope, receive: Receive, send: Send):
        if scope.get("type") != "http":
            return await self.app(scope, receive, send)

        start = time.monotonic()
        body_read = False

        def remaining(limit: float) -> float:
            left = limit - (time.monotonic() - start)
            if left <= 0:
                raise TimeoutError("request deadline exceeded")
            return left

        async def receive_with_deadline() -> Message:
            nonlocal body_read
            if body_read:
                # Only disconnect notifications remain once the body is in
                return await receive()
            message = await asyncio.wait_for(receive(), remaining(self.read_timeout))
            if message.get("type") != "http.request" or not message.get("more_body", False):
                body_read = True
            return message

        async def send_with_deadline(message: Message):
            await asyncio.wait_for(send(message), remaining(self.write_timeout))

        await self.app(scope, receive_with_deadline, send_with_deadline)


class Server:
    def __init__(
        self,
        settings: HttpSettings,
        app: ASGIApp,
        logger: Logger,
        shutdown_timeout: float = SHUTDOWN_TIMEOUT,
    ):
        self.settings = settings
        self.logger = logger.with_component("server")
        self.shutdown_timeout = shutdown_timeout
        self.state = ServerState.STOPPED
        self._thread: Optional[threading.Thread] = None

        config = uvicorn.Config(
            DeadlineMiddleware(app),
            host=settings.host,
            port=settings.port,
            timeout_keep_alive=IDLE_TIMEOUT,
            timeout_graceful_shutdown=shutdown_timeout,
            lifespan="off",
            log_config=None,
            access_log=False,
        )
        self._uvicorn = uvicorn.Server(config)

    @property
    def address(self) -> str:
        return f"{self.settings.host}:{self.settings.port}"

    @property
    def bound_port(self) -> Optional[int]:
        for server in getattr(self._uvicorn, "servers", []) or []:
            for sock in server.sockets:
                return sock.getsockname()[1]
        return None

    def start(self) -> None:
        if self.state is not ServerState.STOPPED:
            return
        # A restarted listener must not report the previous run as started
        self._uvicorn.started = False
        self._uvicorn.servers = []
        self._uvicorn.should_exit = False
        self._uvicorn.force_exit = False
        self._thread = threading.Thread(target=self._serve, name="http-server", daemon=True)
        self.state = ServerState.RUNNING
        self._thread.start()

    def _serve(self) -> None:
        try:
            self._uvicorn.run()
        except SystemExit as e:
            # uvicorn exits this way when it cannot bind
            self.logger.error(
                "Error occurred while running http server",
                error=f"listener exited with status {e.code}",
                address=self.address,
            )
        except Exception as e:
            self.logger.with_error(e).error(
                "Error occurred while running http server", address=self.address
            )
        finally:
            if self.state is ServerState.RUNNING:
                self.state = ServerState.STOPPED

    def wait_until_started(self, timeout: float = 5.0) -> bool:
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if self._uvicorn.started:
                return True
            if self._thread is None or not self._thread.is_alive():
                return False
            time.sleep(0.01)
        return self._uvicorn.started

    def stop(self) -> None:
        thread = self._thread
        if thread is None:
            self.state = ServerState.STOPPED
            return

        self.state = ServerState.STOPPING
        try:
            self._uvicorn.should_exit = True
            thread.join(self.shutdown_timeout + 1.0)
            if thread.is_alive():
                self.logger.warn(
                    "Graceful shutdown exceeded, forcing exit",
                    timeout_s=self.shutdown_timeout,
                )
                self._uvicorn.force_exit = True
                thread.join(1.0)
        except Exception as e:
            self.logger.with_error(e).error("Stopping server failed")
        finally:
            self._thread = None
            self.state = ServerState.STOPPED
