# tests/conftest.py
from __future__ import annotations

from datetime import date

import pytest

from checkout.core.config import AppSettings
from checkout.services.cart_store import CartStore

from fakes import FakeBackend, FakeGateway, make_line

# 所有用例共用的“今天”，避免跨零点抖动
TODAY = date(2026, 10, 16)


@pytest.fixture
def today() -> date:
    return TODAY


@pytest.fixture
def settings() -> AppSettings:
    return AppSettings(API_BASE_URL="http://backend.test", SLOT_WINDOW_DAYS=8, MIN_ADDRESS_LENGTH=10)


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def cart() -> CartStore:
    """store_1，两件商品，合计 500"""
    c = CartStore()
    c.add_item("store_1", "Fresh Mart", make_line("sp_milk", "150"))
    c.add_item("store_1", "Fresh Mart", make_line("sp_rice", "350"))
    return c
