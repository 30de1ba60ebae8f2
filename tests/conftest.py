import os
from datetime import date

import pytest

# Keep module-level engine creation away from the production database
os.environ.setdefault("DATABASE_URL", "sqlite://")

from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from badal_trust.config import settings
from badal_trust.db.database import Base, build_engine
from badal_trust.db import models  # noqa: F401
from badal_trust.dependencies import get_db
from badal_trust.main import app
from badal_trust.services.authorization import Caller, Role
from badal_trust.services.certification_service import certification_service


@pytest.fixture
def engine(tmp_path):
    # File-backed so concurrent sessions share one database
    engine = build_engine(f"sqlite:///{tmp_path / 'badal_trust.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def api_key_headers():
    return {"X-API-Key": settings.API_KEY}


def caller_headers(caller_id, role):
    return {"X-Caller-Id": caller_id, "X-Caller-Role": role}


def provider(provider_id="pilgrim-1"):
    return Caller(id=provider_id, role=Role.PROVIDER)


def scholar(scholar_id="scholar-1"):
    return Caller(id=scholar_id, role=Role.SCHOLAR)


def super_admin(admin_id="root-1"):
    return Caller(id=admin_id, role=Role.SUPER_ADMIN)


COMPLETE_EVIDENCE = {
    "government_id_ref": "media://ids/1",
    "photo_ref": "media://photos/1",
    "has_own_umrah": True,
    "own_umrah_date": date(2023, 3, 14),
    "video_oath_ref": "media://oaths/1",
}


def make_verified_provider(db, provider_id="pilgrim-1"):
    """Walk a certification through submit and approve"""
    certification_service.upsert_certification(
        db, provider(provider_id), provider_id, dict(COMPLETE_EVIDENCE)
    )
    certification_service.submit(db, provider(provider_id), provider_id)
    return certification_service.approve(db, scholar(), provider_id)


@pytest.fixture
def verified_provider(db):
    return make_verified_provider(db)
