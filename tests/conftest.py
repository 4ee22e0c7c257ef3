import mongomock
import pytest
from fastapi.testclient import TestClient

import accounts
import database
import main
from database import utcnow


@pytest.fixture
def db(monkeypatch):
    test_db = mongomock.MongoClient()["rentcar_test"]
    database.ensure_indexes(test_db)
    monkeypatch.setattr(database, "db", test_db)
    monkeypatch.setattr(main, "db", test_db)
    monkeypatch.setenv("USE_TEST_EMAIL", "true")
    # lowest bcrypt cost keeps hashing fast in tests
    monkeypatch.setattr(accounts, "BCRYPT_ROUNDS", 4)
    return test_db


@pytest.fixture
def client(db):
    return TestClient(main.app)


@pytest.fixture
def make_user(db):
    def _make(email="jane@gmail.com", password="Abc12345!", role="user", status="active", name="Jane"):
        doc = {
            "name": name,
            "email": email,
            "password": accounts.hash_password(password),
            "phone": None,
            "role": role,
            "status": status,
            "joinDate": utcnow(),
        }
        db["user"].insert_one(doc)
        return str(doc["_id"])
    return _make


@pytest.fixture
def make_car(db):
    def _make(quantity=2, available=None, price=10.0, **extra):
        doc = {
            "name": "Volt S",
            "model": "Tesla Model S",
            "image": "",
            "description": "",
            "pricePerHour": price,
            "quantity": quantity,
            "available": quantity if available is None else available,
            "category": "sedan",
            "transmission": "automatic",
            "seats": 5,
            "features": ["GPS"],
            "createdAt": utcnow(),
        }
        doc.update(extra)
        db["car"].insert_one(doc)
        return str(doc["_id"])
    return _make


@pytest.fixture
def booking_payload():
    return build_booking_payload


def build_booking_payload(user_id, car_id, hours=3, price=10.0, need_driver=False, driver_contact=None):
    total = hours * price + (hours * 200 if need_driver else 0)
    return {
        "userId": user_id,
        "carId": car_id,
        "startDate": "2026-11-01",
        "endDate": "2026-11-01",
        "startTime": "10:00",
        "endTime": f"{10 + hours:02d}:00",
        "totalAmount": total,
        "needDriver": need_driver,
        "driverContact": driver_contact,
    }
