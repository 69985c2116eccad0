import pytest

from modules.account_registry import AccountRegistry
from utils.event_bus import EventBus
from tests.fakes import TEST_LOGGER, AccountBackend, master_connection


@pytest.fixture
def bus():
    return EventBus(logger=TEST_LOGGER)


@pytest.fixture
def backend():
    return AccountBackend({"tok-a": "CR100", "tok-b": "CR200", "tok-c": "CR300"})


@pytest.fixture
def registry(backend, bus):
    return AccountRegistry(backend.factory, bus=bus, logger=TEST_LOGGER)


@pytest.fixture
def master():
    return master_connection()
