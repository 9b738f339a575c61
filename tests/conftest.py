import os

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("AUTO_CREATE_DB", "false")
os.environ.setdefault("TZ_DEFAULT", "America/Chicago")
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("RATE_LIMIT", "10000/minute")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from opshub.auth.security import create_access_token, get_password_hash
from opshub.db import Base, get_db
from opshub.main import app
from opshub.models.models import Role, User, Location, Personnel, Shift
from opshub.services.equipment_registry import create_equipment
from opshub.services.permissions import DEFAULT_ROLES
from opshub.services.time_rules import combine_date_time

DAY = "2026-06-15"  # a Monday, CDT (UTC-5)

SIGNATURE = (
    "data:image/png;base64,"
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg=="
)

ALL_GOOD = {
    "physical_condition": True,
    "screen_functional": True,
    "buttons_working": True,
    "battery_condition": True,
    "charging_port_ok": True,
    "scanner_functional": True,
    "clean_condition": True,
}


def at(hhmm: str, date: str = DAY):
    """UTC instant of a local wall-clock time."""
    return combine_date_time(date, hhmm)


engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture()
def db():
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def roles(db):
    created = {}
    for name, (description, permissions) in DEFAULT_ROLES.items():
        role = Role(name=name, description=description, permissions=dict(permissions))
        db.add(role)
        created[name] = role
    db.commit()
    return created


def _user(db, roles, username, role_name):
    user = User(
        username=username,
        name=username.replace("_", " ").title(),
        password_hash=get_password_hash("password"),
    )
    user.roles.append(roles[role_name])
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture()
def manager(db, roles):
    return _user(db, roles, "floor_manager", "manager")


@pytest.fixture()
def super_admin(db, roles):
    return _user(db, roles, "owner", "super_admin")


@pytest.fixture()
def admin(db, roles):
    return _user(db, roles, "office_admin", "admin")


@pytest.fixture()
def viewer(db, roles):
    return _user(db, roles, "auditor", "viewer")


@pytest.fixture()
def kiosk(db, roles):
    return _user(db, roles, "front_kiosk", "kiosk")


@pytest.fixture()
def location(db):
    loc = Location(name="Main Warehouse", address="1 Tire Way")
    db.add(loc)
    db.commit()
    return loc


def _person(db, location, first, last):
    person = Personnel(
        first_name=first,
        last_name=last,
        position="Picker",
        department="Warehouse",
        location_id=location.id,
    )
    db.add(person)
    db.commit()
    db.refresh(person)
    return person


@pytest.fixture()
def alice(db, location):
    return _person(db, location, "Alice", "Ng")


@pytest.fixture()
def bob(db, location):
    return _person(db, location, "Bob", "Reyes")


@pytest.fixture()
def morning_shift(db, alice, bob):
    shift = Shift(date=DAY, name="Morning", start_time="08:00", end_time="16:30")
    shift.personnel = [alice, bob]
    db.add(shift)
    db.commit()
    return shift


@pytest.fixture()
def scanner(db, manager, location):
    return create_equipment(
        db, manager, "scanner",
        {"number": "12", "serial_number": "SN-0012", "location_id": location.id},
    )


@pytest.fixture()
def vehicle(db, manager, location):
    return create_equipment(db, manager, "vehicle", {"number": "T-4", "location_id": location.id})


@pytest.fixture()
def client(db):
    def _get_db():
        yield db

    app.dependency_overrides[get_db] = _get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def auth_headers(user):
    return {"Authorization": f"Bearer {create_access_token(str(user.id), roles=[r.name for r in user.roles])}"}


@pytest.fixture()
def other_db(db):
    """A second session on the same database, for racing requests."""
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
