import asyncio
import inspect
import os
import sys
from pathlib import Path

# Environment must be in place before any imports that might initialize the runtime
os.environ.setdefault("TEST_MODE", "true")
os.environ.setdefault("USE_MEMORY_STORE", "true")
os.environ.setdefault("ALLOW_REDIS_FALLBACK_DEV", "true")
os.environ.setdefault(
    "JWT_SIGNING_KEY", "test-signing-key-for-testing-only-do-not-use-in-production"
)
# Empty REDIS_URL selects the in-process revocation cache without a connection attempt
os.environ.setdefault("REDIS_URL", "")

import pytest  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


from bearerguard.service.runtime import reset_runtime_for_tests  # noqa: E402


class RecordingLogger:
    """Collects (level, event, fields) tuples instead of emitting them."""

    def __init__(self):
        self.records = []

    def _record(self, level, event, **fields):
        self.records.append((level, event, fields))

    def debug(self, event, **fields):
        self._record("debug", event, **fields)

    def info(self, event, **fields):
        self._record("info", event, **fields)

    def warning(self, event, **fields):
        self._record("warning", event, **fields)

    def error(self, event, **fields):
        self._record("error", event, **fields)

    def events(self, level=None):
        return [event for lvl, event, _ in self.records if level is None or lvl == level]


@pytest.fixture
def recording_logger():
    return RecordingLogger()


@pytest.fixture(autouse=True)
def reset_runtime_state():
    reset_runtime_for_tests()
    yield
    reset_runtime_for_tests()


def pytest_pyfunc_call(pyfuncitem):
    if inspect.iscoroutinefunction(pyfuncitem.obj):
        call_kwargs = {
            name: pyfuncitem.funcargs[name]
            for name in pyfuncitem._fixtureinfo.argnames
            if name in pyfuncitem.funcargs
        }
        asyncio.run(pyfuncitem.obj(**call_kwargs))
        return True
    return None


def pytest_configure(config):
    config.addinivalue_line("markers", "asyncio: mark test as async")
