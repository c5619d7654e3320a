"""Pytest configuration and shared fixtures."""
# pylint: disable=redefined-outer-name  # pytest fixture injection pattern

import pytest

from couchdoc import CouchClient
from fakecouch import FakeCouch
from models import User


@pytest.fixture
def fake() -> FakeCouch:
    server = FakeCouch()
    server.create_db("users")
    return server


@pytest.fixture
async def client(fake: FakeCouch):
    c = CouchClient("http://couch.test:5984", transport=fake.transport())
    yield c
    await c.close()


@pytest.fixture
def raw_db(client: CouchClient):
    return client.db("users")


@pytest.fixture
def users(client: CouchClient):
    return client.db("users", User)
