import pytest


@pytest.fixture
def anyio_backend():
    # The library and these tests are built on asyncio primitives.
    return "asyncio"
