import pytest
from fastapi.testclient import TestClient

from app import create_app
from connections import ConnectionHub
from directory import Directory


@pytest.fixture
def directory():
    return Directory()


@pytest.fixture
def hub():
    return ConnectionHub()


@pytest.fixture
def app(directory, hub):
    return create_app(directory=directory, hub=hub)


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client
