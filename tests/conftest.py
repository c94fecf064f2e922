import pytest
import os
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret-key")

import blackbox_crm.models  # noqa: F401
from blackbox_crm.core.config import settings
from blackbox_crm.core.deps import get_db
from blackbox_crm.db.base import Base
from blackbox_crm.main import app
from blackbox_crm.routers.auth import login_rate_limiter


@pytest.fixture()
def test_context():
    original_secret = settings.secret_key
    original_public_url = settings.public_web_base_url
    settings.secret_key = "test-secret-key"
    settings.public_web_base_url = None

    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    def override_get_db():
        db = session_local()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app) as client:
        yield client, session_local

    app.dependency_overrides.clear()
    Base.metadata.drop_all(bind=engine)
    settings.secret_key = original_secret
    settings.public_web_base_url = original_public_url
    login_rate_limiter.clear()
