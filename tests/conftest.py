"""Pytest configuration and shared fixtures."""

from datetime import datetime

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from warden.bootstrap import bootstrap_registry
from warden.core.config import Settings
from warden.core.grants import GrantService
from warden.core.rbac.checker import PermissionChecker
from warden.core.rbac.principal import Principal
from warden.core.rbac.registry import PermissionRegistry
from warden.core.roles import RoleService
from warden.db.session import get_session_factory, init_db
from tests.factories import NOW


@pytest.fixture
def engine():
    """Fresh in-memory SQLite database per test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(engine):
    session = get_session_factory(engine)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def registry():
    """Validated registry with the core and SSH catalogues."""
    return bootstrap_registry(PermissionRegistry())


@pytest.fixture
def settings():
    return Settings(_env_file=None)


@pytest.fixture
def clock():
    """Mutable clock; set ``clock.now`` to move time."""

    class Clock:
        def __init__(self):
            self.now = NOW

        def __call__(self) -> datetime:
            return self.now

    return Clock()


@pytest.fixture
def checker(db_session, registry, clock):
    return PermissionChecker.for_session(db_session, registry, clock=clock)


@pytest.fixture
def grant_service(db_session, registry, checker, clock, settings):
    return GrantService(db_session, registry, checker=checker, clock=clock, settings=settings)


@pytest.fixture
def role_service(db_session, registry, checker, settings):
    return RoleService(db_session, registry, checker=checker, settings=settings)


@pytest.fixture
def root():
    return Principal.user("root-user", is_root=True)
