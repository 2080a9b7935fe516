"""Tests for the FastAPI permission dependency."""

import pytest
from fastapi import FastAPI, Request
from fastapi.testclient import TestClient

from tests.factories import create_resource_grant, create_role, user_principal
from warden.api.deps import PermissionDependency, get_checker, require_permission


@pytest.fixture
def principal_holder():
    return {"principal": None}


@pytest.fixture
def client(checker, principal_holder):
    app = FastAPI()

    @app.middleware("http")
    async def attach_principal(request: Request, call_next):
        if principal_holder["principal"] is not None:
            request.state.principal = principal_holder["principal"]
        return await call_next(request)

    @app.get("/users", dependencies=[require_permission("user.view")])
    def list_users():
        return {"ok": True}

    @app.delete("/users/{user_id}", dependencies=[require_permission("user.delete")])
    def delete_user(user_id: str):
        return {"deleted": user_id}

    @app.get("/ghost", dependencies=[require_permission("ghost.view")])
    def ghost():
        return {"ok": True}

    @app.post(
        "/connections/{connection_id}/launch",
        dependencies=[require_permission(
            "connection.launch",
            resource_type="connection",
            resource_param="connection_id",
        )],
    )
    def launch(connection_id: str):
        return {"launched": connection_id}

    app.dependency_overrides[get_checker] = lambda: checker
    return TestClient(app)


class TestPermissionDependency:
    """Test HTTP mapping of permission decisions."""

    def test_unauthenticated(self, client):
        response = client.get("/users")
        assert response.status_code == 401

    def test_allowed(self, db_session, client, principal_holder):
        role = create_role(db_session, permissions=["user.view"])
        principal_holder["principal"] = user_principal(db_session, roles=[role])

        assert client.get("/users").status_code == 200

    def test_missing_prerequisite_forbidden(self, db_session, client, principal_holder):
        """Test user.delete without its prerequisites is a 403."""
        role = create_role(db_session, permissions=["user.view", "user.delete"])
        principal_holder["principal"] = user_principal(db_session, roles=[role])

        response = client.delete("/users/u1")

        assert response.status_code == 403
        assert response.json() == {"detail": "Insufficient permissions"}

    def test_unknown_permission_looks_like_any_denial(self, db_session, client, principal_holder):
        principal_holder["principal"] = user_principal(db_session)

        response = client.get("/ghost")

        assert response.status_code == 403
        assert response.json() == {"detail": "Insufficient permissions"}

    def test_root_bypass(self, client, principal_holder, root):
        principal_holder["principal"] = root
        assert client.get("/ghost").status_code == 200

    def test_resource_scoped_route(self, db_session, client, principal_holder):
        principal = user_principal(db_session)
        create_resource_grant(
            db_session, principal=principal,
            resource_id="c1", permissions=["connection.view", "connection.launch"],
        )
        principal_holder["principal"] = principal

        assert client.post("/connections/c1/launch").status_code == 200
        assert client.post("/connections/c2/launch").status_code == 403

    def test_requires_permissions(self):
        with pytest.raises(ValueError):
            PermissionDependency()

    def test_resource_type_needs_param(self):
        with pytest.raises(ValueError):
            PermissionDependency("connection.launch", resource_type="connection")
