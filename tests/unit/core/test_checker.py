"""Tests for permission evaluation."""

import logging
from datetime import timedelta

import pytest

from tests.factories import (
    NOW,
    create_resource_grant,
    create_role,
    create_team,
    team_principal,
    user_principal,
)
from warden.core.errors import RegistryNotReady
from warden.core.rbac.checker import PermissionChecker, has_permission
from warden.core.rbac.principal import Principal, ResourceRef, principal_for_team
from warden.core.rbac.registry import Permission, PermissionRegistry
from warden.core.rbac.sources import GrantSource


class StaticSource(GrantSource):
    """Grant source returning a fixed set, for closure tests."""

    def __init__(self, granted):
        self.granted = set(granted)

    def permissions_for(self, principal, resource, now):
        return set(self.granted)


def static_checker(registry, *granted):
    return PermissionChecker(registry, [StaticSource(granted)])


@pytest.fixture
def alice():
    return Principal.user("alice")


class TestDependencyClosure:
    """Test fail-closed prerequisite evaluation."""

    def test_permission_without_prerequisites_is_denied(self, registry, alice):
        """Test holding user.delete alone grants nothing."""
        checker = static_checker(registry, "user.delete")

        assert not checker.check(alice, "user.delete")
        assert checker.effective_permissions(alice) == frozenset()

    def test_permission_with_all_prerequisites(self, registry, alice):
        checker = static_checker(registry, "user.view", "user.edit", "user.delete")

        assert checker.check(alice, "user.delete")
        assert checker.effective_permissions(alice) == {"user.view", "user.edit", "user.delete"}

    def test_prerequisites_are_never_granted_implicitly(self, registry, alice):
        """Test holding user.delete does not grant user.view."""
        checker = static_checker(registry, "user.delete")
        assert not checker.check(alice, "user.view")

    def test_partial_prerequisites_across_roles(self, db_session, registry, checker):
        """Test prerequisites may come from different roles."""
        r1 = create_role(db_session, permissions=["user.view", "user.delete"])
        r2 = create_role(db_session, permissions=["user.edit"])

        only_r1 = user_principal(db_session, roles=[r1])
        both = user_principal(db_session, roles=[r1, r2])

        assert not checker.check(only_r1, "user.delete")
        assert checker.check(both, "user.delete")

    def test_transitive_chain(self, alice):
        """Test D -> [B, C], B -> [A] requires all of A, B, C."""
        registry = PermissionRegistry()
        registry.register(Permission("a", "test"))
        registry.register(Permission("b", "test", depends_on=("a",)))
        registry.register(Permission("c", "test"))
        registry.register(Permission("d", "test", depends_on=("b", "c")))
        registry.validate_dependencies()

        assert not static_checker(registry, "b", "c", "d").check(alice, "d")
        assert static_checker(registry, "a", "b", "c", "d").check(alice, "d")

    def test_implied_permissions(self, alice):
        """Test explicit implications extend the raw grant set."""
        registry = PermissionRegistry()
        registry.register(Permission("doc.view", "test"))
        registry.register(Permission("doc.edit", "test", depends_on=("doc.view",)))
        registry.register(Permission("doc.admin", "test", implies=("doc.view", "doc.edit")))
        registry.validate_dependencies()

        checker = static_checker(registry, "doc.admin")
        assert checker.check(alice, "doc.edit")
        assert checker.effective_permissions(alice) == {"doc.view", "doc.edit", "doc.admin"}

    def test_check_any_and_all(self, registry, alice):
        checker = static_checker(registry, "team.view")

        assert checker.check_any(alice, ["team.manage", "team.view"])
        assert not checker.check_all(alice, ["team.manage", "team.view"])

    def test_missing_permissions(self, registry, alice):
        checker = static_checker(registry, "user.view", "user.edit")

        assert checker.missing_permissions(alice, ["user.edit", "user.delete", "ghost"]) == [
            "ghost", "user.delete",
        ]


class TestRootBypass:
    """Test the root principal bypass."""

    def test_root_holds_everything(self, registry, root):
        checker = static_checker(registry)

        assert checker.check(root, "user.delete")
        assert checker.check(root, "protocol:ssh.port_forward", ResourceRef("connection", "c1"))
        assert checker.effective_permissions(root) == registry.ids()
        assert checker.missing_permissions(root, ["user.delete"]) == []

    def test_root_passes_unknown_permission(self, registry, root):
        assert static_checker(registry).check(root, "not.registered")

    def test_root_user_row(self, db_session, checker):
        principal = user_principal(db_session, is_root=True)
        assert principal.is_root
        assert checker.check(principal, "permission.manage")


class TestUnknownPermission:
    """Test unknown permission handling."""

    def test_unknown_permission_is_denied(self, registry, alice, caplog):
        checker = static_checker(registry, "ghost.view")

        with caplog.at_level(logging.WARNING, logger="warden"):
            assert not checker.check(alice, "ghost.view")
        assert "unknown permission" in caplog.text

    def test_unregistered_grant_ignored_in_effective_permissions(self, registry, alice):
        checker = static_checker(registry, "ghost.view", "team.view")
        assert checker.effective_permissions(alice) == {"team.view"}

    def test_unvalidated_registry_refused(self):
        with pytest.raises(RegistryNotReady):
            PermissionChecker(PermissionRegistry(), [])


class TestTeamGrants:
    """Test permissions obtained through team membership."""

    def test_team_role_applies_to_members(self, db_session, checker):
        role = create_role(db_session, permissions=["connection.view", "connection.launch"])
        team = create_team(db_session, roles=[role])
        member = user_principal(db_session, teams=[team])
        outsider = user_principal(db_session)

        assert checker.check(member, "connection.launch")
        assert not checker.check(outsider, "connection.launch")

    def test_team_capability(self, db_session, checker):
        """Test a capability is honoured when its prerequisites are held."""
        role = create_role(db_session, permissions=["connection.view"])
        team = create_team(db_session, capabilities=["connection.launch"])
        member = user_principal(db_session, roles=[role], teams=[team])

        assert checker.check(member, "connection.launch")

    def test_team_capability_still_needs_prerequisites(self, db_session, checker):
        team = create_team(db_session, capabilities=["connection.launch"])
        member = user_principal(db_session, teams=[team])

        assert not checker.check(member, "connection.launch")

    def test_team_principal(self, db_session, checker):
        role = create_role(db_session, permissions=["team.view"])
        team = team_principal(db_session, roles=[role], capabilities=["team.manage"])

        assert checker.check(team, "team.manage")


class TestResourceGrants:
    """Test resource-scoped grants and expiry."""

    def test_resource_grant_requires_resource(self, db_session, checker):
        """Test resource grants only apply when the resource is supplied."""
        principal = user_principal(db_session)
        create_resource_grant(db_session, principal=principal, permissions=["connection.view"])

        assert checker.check(principal, "connection.view", ResourceRef("connection", "conn-1"))
        assert not checker.check(principal, "connection.view")
        assert not checker.check(principal, "connection.view", ResourceRef("connection", "conn-2"))

    def test_expiry_boundary(self, db_session, checker, clock):
        """Test a grant expiring exactly now is already expired."""
        resource = ResourceRef("connection", "conn-1")
        principal = user_principal(db_session)
        create_resource_grant(
            db_session, principal=principal,
            permissions=["connection.view"],
            expires_at=NOW + timedelta(seconds=1),
        )

        assert checker.check(principal, "connection.view", resource)

        clock.now = NOW + timedelta(seconds=1)
        assert not checker.check(principal, "connection.view", resource)

        clock.now = NOW + timedelta(hours=1)
        assert not checker.check(principal, "connection.view", resource)

    def test_team_resource_grant_applies_to_members(self, db_session, checker):
        team = create_team(db_session)
        team_p = principal_for_team(db_session, team.id)
        member = user_principal(db_session, teams=[team])
        create_resource_grant(
            db_session, principal=team_p,
            permissions=["connection.view", "connection.launch"],
        )

        resource = ResourceRef("connection", "conn-1")
        assert checker.check(member, "connection.launch", resource)
        assert checker.check(team_p, "connection.launch", resource)

    def test_resource_grant_combines_with_roles(self, db_session, checker):
        """Test prerequisites held through a role satisfy a resource-scoped grant."""
        role = create_role(db_session, permissions=["connection.view"])
        principal = user_principal(db_session, roles=[role])
        create_resource_grant(db_session, principal=principal, permissions=["connection.launch"])

        resource = ResourceRef("connection", "conn-1")
        assert checker.check(principal, "connection.launch", resource)
        assert checker.effective_permissions(principal, resource) == {
            "connection.view", "connection.launch",
        }


class TestHasPermission:

    def test_uses_global_registry(self, db_session, monkeypatch, registry):
        monkeypatch.setattr("warden.core.rbac.checker.get_registry", lambda: registry)
        role = create_role(db_session, permissions=["team.view"])
        principal = user_principal(db_session, roles=[role])

        assert has_permission(db_session, principal, "team.view")
        assert not has_permission(db_session, principal, "team.manage")
