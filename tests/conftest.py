"""Shared fixtures: an in-memory SQLite database, a fresh definition cache and an API client."""
import os

# Must be set before app.core.db builds its engine
os.environ.setdefault("DATABASE_URL", "sqlite://")

import uuid
from typing import Iterable, Tuple

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.auth import require_auth_token
from app.core.cache import InMemoryDecisionCache, get_definition_cache
from app.core.db import get_db, init_db
from app.main import app
from app.models.orm.experiment import ExperimentStatus
from app.models.schemas.experiment import ExperimentCreateModel, VariantConfig
from app.services.experiment_service import ExperimentService
from app.services.feature_flag_service import FeatureFlagService


def synthetic_user_ids(count: int, prefix: str = "user") -> list:
    """Deterministic, well-spread user ids for distribution checks."""
    return [f"{prefix}-{uuid.uuid5(uuid.NAMESPACE_URL, str(i))}" for i in range(count)]


@pytest.fixture
def user_ids():
    return synthetic_user_ids


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def cache():
    return InMemoryDecisionCache()


@pytest.fixture
def experiment_service(db_session, cache):
    return ExperimentService(db_session, cache, cache_ttl=60)


@pytest.fixture
def flag_service(db_session, cache):
    return FeatureFlagService(db_session, cache, cache_ttl=60)


@pytest.fixture
def create_experiment(experiment_service):
    def _create(
        key: str = "checkout-button-color",
        variants: Iterable[Tuple[str, int]] = (("blue", 50), ("green", 50)),
        traffic_pct: int = 100,
        status: ExperimentStatus = ExperimentStatus.RUNNING,
    ):
        return experiment_service.create_experiment(
            ExperimentCreateModel(
                key=key,
                status=status,
                traffic_pct=traffic_pct,
                variants=[
                    VariantConfig(name=name, weight_pct=weight, payload={"color": name})
                    for name, weight in variants
                ],
            )
        )

    return _create


@pytest.fixture
def client(session_factory, cache):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_definition_cache] = lambda: cache
    app.dependency_overrides[require_auth_token] = lambda: "test-token"

    yield TestClient(app)

    app.dependency_overrides.clear()
