from unittest.mock import AsyncMock, Mock

import pytest

from tests.fakes import FakeFacebook, FakeScheduler, QueuedSpawner


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def spawner():
    spawner = QueuedSpawner()
    yield spawner
    spawner.discard()


@pytest.fixture
def facebook():
    return FakeFacebook()


@pytest.fixture
def catalog():
    catalog = Mock()
    catalog.get_products = AsyncMock(return_value=[])
    catalog.get_properties = AsyncMock(return_value=[])
    catalog.get_payment_methods = AsyncMock(return_value=[])
    catalog.get_product = AsyncMock(return_value=None)
    catalog.get_property = AsyncMock(return_value=None)
    return catalog


@pytest.fixture
def bookkeeper():
    bookkeeper = Mock()
    bookkeeper.after_text_turn = AsyncMock()
    bookkeeper.after_image_turn = AsyncMock()
    return bookkeeper


@pytest.fixture
def no_sleep():
    return AsyncMock()
