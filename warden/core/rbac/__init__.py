"""RBAC (Role-Based Access Control) module for warden.

This module defines the permission registry, grant sources and the checker
that evaluates access decisions.
"""

from .registry import (
    Permission,
    PermissionRegistry,
    get_registry,
    register_protocol_permission,
)
from .principal import Principal, PrincipalType, ResourceRef
from .sources import GrantSource, RoleGrantSource, TeamCapabilitySource, ResourceGrantSource
from .checker import PermissionChecker, has_permission

__all__ = [
    "Permission",
    "PermissionRegistry",
    "get_registry",
    "register_protocol_permission",
    "Principal",
    "PrincipalType",
    "ResourceRef",
    "GrantSource",
    "RoleGrantSource",
    "TeamCapabilitySource",
    "ResourceGrantSource",
    "PermissionChecker",
    "has_permission",
]
