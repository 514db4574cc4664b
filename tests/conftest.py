"""Shared fixtures for all test packages.

Every test gets a fresh temp-file SQLite DatabaseManager that has already
run ``init()`` (tables, column steps, default settings and admin user).
"""
import os
import shutil
import tempfile

import pytest

from database import DatabaseManager, set_database


@pytest.fixture
def temp_dir():
    """Yield a throwaway directory removed after the test."""
    path = tempfile.mkdtemp(prefix="yuncang-tests-")
    try:
        yield path
    finally:
        shutil.rmtree(path, ignore_errors=True)


@pytest.fixture
def temp_db(temp_dir):
    """Yield an initialized DatabaseManager bound to a temp SQLite database."""
    db_path = os.path.join(temp_dir, "test.db")
    manager = DatabaseManager(
        database_url=f"sqlite:///{db_path}",
        legacy_json_path=os.path.join(temp_dir, "merchants.json"),
    )
    manager.init()
    set_database(manager)

    try:
        yield manager
    finally:
        set_database(None)
        manager.close()


def make_merchant(db, **overrides):
    """Helper: create a merchant and return its dict."""
    data = {
        "name": "鲜果铺",
        "warehouse1": "一号仓",
        "warehouse2": "二号仓",
        "default_warehouse": "一号仓",
        "group_name": "鲜果铺对接群",
    }
    data.update(overrides)
    return db.merchants.insert(data)


def make_product(db, merchant_id, **overrides):
    """Helper: create a product under a merchant and return its dict."""
    data = {
        "merchant_id": merchant_id,
        "product_name": "红富士苹果",
        "pinduoduo_product_id": "pdd-001",
    }
    data.update(overrides)
    return db.products.insert(data)


def make_delivery(db, **overrides):
    """Helper: create a daily delivery record and return its dict."""
    data = {
        "merchant_name": "鲜果铺",
        "product_name": "红富士苹果",
        "unit": "箱",
        "dispatch_quantity": 10,
        "entry_user": "admin",
        "delivery_date": "2024-05-01",
    }
    data.update(overrides)
    return db.deliveries.insert(data)


def make_return(db, **overrides):
    """Helper: create a return detail record and return its dict."""
    data = {
        "merchant_name": "鲜果铺",
        "product_name": "红富士苹果",
        "unit": "箱",
        "actual_return_quantity": 2,
        "entry_user": "admin",
        "return_date": "2024-05-01",
    }
    data.update(overrides)
    return db.returns.insert(data)


def make_employee(db, **overrides):
    """Helper: create an employee and return its dict."""
    data = {
        "employee_number": "ZS1",
        "name": "张三",
        "real_name": "张三",
        "phone": "13800138000",
        "password": "secret123",
        "login_code": "ABCD1234",
    }
    data.update(overrides)
    return db.employees.insert(data)


class FakeResponse:
    """Minimal stand-in for requests.Response."""

    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self.ok = 200 <= status_code < 300
        self._payload = payload

    def json(self):
        if self._payload is None:
            raise ValueError("no json body")
        return self._payload


class FakeHttp:
    """Records outbound POSTs instead of sending them."""

    def __init__(self, response=None, error=None):
        self.response = response or FakeResponse(payload={"code": 0})
        self.error = error
        self.calls = []

    def post(self, url, params=None, json=None, timeout=None):
        self.calls.append({"url": url, "params": params, "json": json,
                           "timeout": timeout})
        if self.error is not None:
            raise self.error
        return self.response
