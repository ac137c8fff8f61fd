import os
import sys
import asyncio
import inspect
import io
import json

import pytest

# Ensure project root is on sys.path so `import app` works in tests
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from app.config import LoggerSettings  # noqa: E402
from app.obs.logger import Logger  # noqa: E402
from app.service.example import Services  # noqa: E402


def pytest_pyfunc_call(pyfuncitem):
    """Allow running async tests without pytest-asyncio.

    If the test function is a coroutine, run it in a fresh event loop.
    """
    testfunction = pyfuncitem.obj
    if inspect.iscoroutinefunction(testfunction):
        funcargs = pyfuncitem.funcargs
        sig = inspect.signature(testfunction)
        # Filter only the parameters that the test function expects
        allowed = {name: funcargs[name] for name in sig.parameters.keys() if name in funcargs}
        asyncio.run(testfunction(**allowed))
        return True
    return None


def read_records(source):
    """Parse every JSON log line written since the last read.

    ``source`` is either the ``log_output`` buffer or pytest's ``capsys``.
    """
    if isinstance(source, io.StringIO):
        out = source.getvalue()
        source.seek(0)
        source.truncate()
    else:
        out = source.readouterr().out
    return [json.loads(line) for line in out.splitlines() if line.strip().startswith("{")]


@pytest.fixture
def log_output():
    return io.StringIO()


@pytest.fixture
def logger(log_output):
    return Logger.create(
        LoggerSettings(level="debug", service="test-svc", version="9.9.9", environment="test"),
        stream=log_output,
    )


class FakeExample:
    def __init__(self, error=None):
        self.error = error
        self.calls = 0

    def example_method(self):
        self.calls += 1
        if self.error:
            raise self.error


class FakeHealth:
    def __init__(self, error=None):
        self.error = error
        self.calls = 0

    def ping(self):
        self.calls += 1
        if self.error:
            raise self.error


@pytest.fixture
def fake_services():
    return Services(example=FakeExample(), health=FakeHealth())


@pytest.fixture
def client(fake_services, logger):
    from fastapi.testclient import TestClient
    from app.handler import create_app

    return TestClient(create_app(fake_services, logger))
