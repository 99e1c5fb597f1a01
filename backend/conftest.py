"""Shared fixtures: a temporary database, a fresh app per test, tokens and orders."""

import os
import tempfile

import pytest

from app import create_app
from auth import create_access_token
from db import get_db_connection, init_db

CUSTOMER_PHONE = '+966500000001'
DRIVER_PHONE = '+966500000002'
OTHER_DRIVER_PHONE = '+966500000003'
STRANGER_PHONE = '+966500000004'


def bearer(phone_number):
    return f'Bearer {create_access_token(phone_number)}'


@pytest.fixture
def database(monkeypatch):
    """Point the db module at a temporary database file."""
    db_fd, db_path = tempfile.mkstemp(suffix='.db')
    monkeypatch.setattr('db.DATABASE_PATH', db_path)
    init_db()

    yield db_path

    os.close(db_fd)
    if os.path.exists(db_path):
        os.unlink(db_path)


@pytest.fixture
def server(database):
    app, socketio = create_app()
    app.config['TESTING'] = True
    return app, socketio


@pytest.fixture
def flask_app(server):
    return server[0]


@pytest.fixture
def socketio(server):
    return server[1]


@pytest.fixture
def registry(flask_app):
    return flask_app.extensions['tracking_registry']


@pytest.fixture
def client(flask_app):
    with flask_app.test_client() as client:
        yield client


@pytest.fixture
def make_order(database):
    """Insert an order row directly and return its id."""

    def _make_order(user_id=CUSTOMER_PHONE, phone_number=None):
        conn = get_db_connection()
        cursor = conn.execute(
            'INSERT INTO orders (userId, phoneNumber, totalAmount, paymentType) '
            'VALUES (?, ?, ?, ?)',
            (user_id, phone_number or user_id, 42.5, 'cash'))
        conn.commit()
        order_id = cursor.lastrowid
        conn.close()
        return order_id

    return _make_order


@pytest.fixture
def make_user(database):
    def _make_user(phone_number=CUSTOMER_PHONE):
        conn = get_db_connection()
        conn.execute('INSERT INTO users (phoneNumber) VALUES (?)', (phone_number,))
        conn.commit()
        conn.close()

    return _make_user
