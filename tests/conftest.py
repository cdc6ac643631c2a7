import os
import sys
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

ROOT_DIR = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT_DIR))

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SHIP_AD_API_KEY", "test-ship-key")
os.environ.setdefault("META_PAGE_ID", "page_1")
os.environ.setdefault("META_DEFAULT_SAVED_AUDIENCE_ID", "audience_1")
os.environ.setdefault("MEDIA_STORAGE_BUCKET", "test-bucket")
os.environ.setdefault("PIPELINE_UTM_PARAMS", "utm_source=meta")

from ad_shipper.db import models  # noqa: E402,F401
from ad_shipper.db.base import Base  # noqa: E402


@pytest.fixture()
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autocommit=False, autoflush=False, future=True)
    try:
        yield factory
    finally:
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture()
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()
