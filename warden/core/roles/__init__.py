"""Role management for warden."""

from .service import RoleService

__all__ = ["RoleService"]
