import os

os.environ.setdefault("DB_BACKEND", "sqlite")
os.environ.setdefault("EMBEDDING_NOTIFY_MODE", "none")
os.environ.setdefault("SYNC_CACHE_FILE", "")

import pytest
from sqlalchemy.orm import sessionmaker

from listsync.db import DB, build_engine, session_scope
from listsync.models import Base, User
from listsync.timestamps import utcnow


@pytest.fixture
def db_engine(tmp_path):
    db_path = tmp_path / "sync.sqlite"
    engine = build_engine(f"sqlite:///{db_path}", "sqlite")
    Base.metadata.create_all(engine)
    previous_engine = DB.engine
    previous_session = DB.SessionLocal
    DB.engine = engine
    DB.SessionLocal = sessionmaker(bind=engine, expire_on_commit=False)
    try:
        yield engine
    finally:
        DB.engine = previous_engine
        DB.SessionLocal = previous_session
        engine.dispose()


@pytest.fixture
def users(db_engine):
    now = utcnow()
    with session_scope() as db:
        for user_id, username in (("user-a", "alice"), ("user-b", "bob"), ("user-c", "carol")):
            db.add(User(id=user_id, username=username, full_name=username.title(), created_at=now, updated_at=now))
    return "user-a", "user-b", "user-c"
