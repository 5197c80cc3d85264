import asyncio
import inspect
import os

# Set before any imports that might build settings or the runtime
os.environ.setdefault("USE_MEMORY_STORE", "true")
# TestClient talks plain http; Secure cookies would never be sent back
os.environ.setdefault("SESSION_COOKIE_SECURE", "false")
os.environ.setdefault("APP_BASE_URL", "http://localhost:3000")

import pytest  # noqa: E402

from coursesphere.service.runtime import reset_runtime_for_tests  # noqa: E402


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
