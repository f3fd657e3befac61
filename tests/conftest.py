"""
Shared fixtures for the KIPR test suite.

The ``client`` fixture is parametrized so every contract test runs once
against the memory backend and once against the REST backend talking to the
reference service in process.
"""

import httpx
import pytest
import pytest_asyncio

from kipr_sdk import MemoryClient, MemoryStore, RestClient
from kipr_server import Settings, create_app

# Low PBKDF2 cost keeps registration fast in tests
TEST_HASH_ITERATIONS = 1000


@pytest.fixture
def store():
    """Fresh store per test."""
    return MemoryStore(hash_iterations=TEST_HASH_ITERATIONS)


@pytest.fixture
def app(store):
    """Reference service over the test store."""
    return create_app(store=store, settings=Settings(hash_iterations=TEST_HASH_ITERATIONS))


@pytest_asyncio.fixture(params=["memory", "rest"])
async def client(request, store, app):
    """A KIPR client for each backend, sharing the test store."""
    if request.param == "memory":
        kipr = MemoryClient(store)
    else:
        kipr = RestClient("http://testserver", transport=httpx.ASGITransport(app=app))

    yield kipr

    await kipr.close()


@pytest_asyncio.fixture
async def alice(client):
    """Registered user 'alice'."""
    return await client.register("alice", "secret", "alice@example.com")


@pytest_asyncio.fixture
async def bob(client):
    """Registered user 'bob'."""
    return await client.register("bob", "hunter2", "bob@example.com")
