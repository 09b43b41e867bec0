import os

os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from splitledger.database import Base, get_db
from splitledger.main import app
from splitledger.models import Balance, Project, ProjectMember
from splitledger.ratelimit import limiter

OWNER = "alice"
MEMBERS = ["bob", "carol", "dave"]
OUTSIDER = "mallory"


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def project(db):
    project = Project(owner_id=OWNER, title="Flat 4B", currency="USD")
    project.members = [ProjectMember(user_id=OWNER, role="owner")] + [
        ProjectMember(user_id=uid, role="member") for uid in MEMBERS
    ]
    db.add(project)
    db.commit()
    return project


@pytest.fixture
def client(session_factory, project):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    limiter.enabled = False
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
    limiter.enabled = True


def balance_map(db, project_id) -> dict[tuple[str, str], int]:
    """{(debtor, creditor): amount} for every stored balance row."""
    return {
        (b.from_user_id, b.to_user_id): b.amount
        for b in db.query(Balance).filter(Balance.project_id == project_id).all()
    }
