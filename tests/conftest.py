import pytest
import os
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret-key")

import inventory_service.models  # noqa: F401
from inventory_service.core.config import settings
from inventory_service.core.deps import get_db
from inventory_service.db.base import Base
from inventory_service.db.session import enable_sqlite_foreign_keys
from inventory_service.main import app


@pytest.fixture()
def test_context():
    original_secret = settings.secret_key
    original_inline_dispatch = settings.stock_alerts_inline_dispatch
    settings.secret_key = "test-secret-key"
    settings.stock_alerts_inline_dispatch = True

    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    event.listen(engine, "connect", enable_sqlite_foreign_keys)
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
    settings.stock_alerts_inline_dispatch = original_inline_dispatch
