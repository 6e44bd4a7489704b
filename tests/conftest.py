import os

# Point the app at a shared in-memory database before it is imported
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["SECRET_KEY"] = "test-secret"
os.environ["CREATE_TABLES"] = "0"

import pytest
from fastapi.testclient import TestClient
from jose import jwt

from noteearly.database import Base, SessionLocal, engine
from noteearly.main import app
from noteearly.models.schema import Profile, ReadingModule, UserRole
from noteearly.progress_service import ProgressService
from noteearly.security import ALGORITHM, SECRET_KEY


@pytest.fixture(autouse=True)
def tables():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def service(db):
    return ProgressService(db)


@pytest.fixture
def admin(db):
    profile = Profile(role=UserRole.ADMIN, full_name="Ms Teacher", email="teacher@example.com")
    db.add(profile)
    db.commit()
    return profile


@pytest.fixture
def other_admin(db):
    profile = Profile(role=UserRole.ADMIN, full_name="Mr Elsewhere", email="elsewhere@example.com")
    db.add(profile)
    db.commit()
    return profile


@pytest.fixture
def super_admin(db):
    profile = Profile(role=UserRole.SUPER_ADMIN, full_name="Head Office", email="root@example.com")
    db.add(profile)
    db.commit()
    return profile


@pytest.fixture
def student(db, admin):
    profile = Profile(role=UserRole.STUDENT, full_name="Sam Reader", admin_id=admin.id, age=9, reading_level=3)
    db.add(profile)
    db.commit()
    return profile


def make_module(db, paragraphs, admin_id=None, title="The River"):
    module = ReadingModule(
        title=title,
        structured_content=[{"text": text} for text in paragraphs],
        level=3,
        type="custom" if admin_id else "curated",
        genre="Adventure",
        language="UK",
        admin_id=admin_id,
    )
    db.add(module)
    db.commit()
    return module


@pytest.fixture
def module(db, admin):
    return make_module(db, ["First paragraph.", "Second paragraph."], admin_id=admin.id)


def token_for(profile):
    return jwt.encode({"sub": profile.id, "role": profile.role}, SECRET_KEY, algorithm=ALGORITHM)


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def student_client(client, student):
    client.cookies.set("student_token", token_for(student))
    return client


@pytest.fixture
def admin_headers(admin):
    return {"Authorization": f"Bearer {token_for(admin)}"}
