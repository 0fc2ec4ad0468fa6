import mongomock
import pytest
from fastapi.testclient import TestClient

from registrar.auth import create_access_token
from registrar.database import Store, get_store
from registrar.main import app
from registrar.schemas import Course, Section, User


@pytest.fixture
def store():
    s = Store(mongomock.MongoClient(), "registrar_test", transactions=False)
    s.ensure_indexes()
    return s


@pytest.fixture
def add_user(store):
    def _add(user_id, role="student", name=None, **fields):
        user = User(
            id=user_id,
            name=name or f"User {user_id}",
            email=f"{user_id.lower()}@uni.edu",
            role=role,
            **fields,
        )
        store.create_document("user", user)
        return user
    return _add


@pytest.fixture
def add_course(store):
    def _add(code, doctor_id="D1", **fields):
        fields.setdefault("name", f"Course {code}")
        course = Course(code=code, doctor_id=doctor_id, **fields)
        store.create_document("course", course)
        return course
    return _add


@pytest.fixture
def add_section():
    def _build(section_id, capacity=10, sessions=None, students=None, ta_id=None):
        return Section(section_id=section_id, capacity=capacity, sessions=sessions or [],
                       registered_students=students or [], ta_id=ta_id)
    return _build


@pytest.fixture
def load_user(store):
    def _load(user_id):
        return User.model_validate(store["user"].find_one({"id": user_id}))
    return _load


@pytest.fixture
def load_course(store):
    def _load(code):
        doc = store["course"].find_one({"code": code})
        return Course.model_validate(doc) if doc else None
    return _load


@pytest.fixture
def client(store):
    app.dependency_overrides[get_store] = lambda: store
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth():
    def _headers(user_id, role):
        return {"Authorization": f"Bearer {create_access_token(user_id, role)}"}
    return _headers
