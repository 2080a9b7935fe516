"""FastAPI dependencies for permission checks.

The authentication layer is expected to resolve the caller and store it as
``request.state.principal``. Denials are reported as a generic 403 so that
clients cannot tell an unknown permission from one they simply lack.
"""

from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from warden.common.logger import get_logger
from warden.core.rbac.checker import PermissionChecker
from warden.core.rbac.principal import Principal, ResourceRef
from warden.db.session import get_db

logger = get_logger("api")


def get_checker(db: Session = Depends(get_db)) -> PermissionChecker:
    """Permission checker bound to the request's database session."""
    return PermissionChecker.for_session(db)


def get_current_principal(request: Request) -> Principal:
    """Get the principal resolved by the authentication layer."""
    principal = getattr(request.state, "principal", None)
    if principal is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
        )
    return principal


class PermissionDependency:
    """
    FastAPI dependency for permission checking.

    Usage:
        @router.get("/connections", dependencies=[Depends(PermissionDependency("connection.view"))])
        def list_connections():
            ...

        @router.post(
            "/connections/{connection_id}/launch",
            dependencies=[Depends(PermissionDependency(
                "connection.launch",
                resource_type="connection",
                resource_param="connection_id",
            ))],
        )
        def launch(connection_id: str):
            ...
    """

    def __init__(
        self,
        *permissions: str,
        require_all: bool = False,
        resource_type: Optional[str] = None,
        resource_param: Optional[str] = None,
    ):
        if not permissions:
            raise ValueError("At least one permission is required")
        if (resource_type is None) != (resource_param is None):
            raise ValueError("resource_type and resource_param must be given together")
        self.permissions = permissions
        self.require_all = require_all
        self.resource_type = resource_type
        self.resource_param = resource_param

    def resource_for(self, request: Request) -> Optional[ResourceRef]:
        if self.resource_type is None:
            return None
        resource_id = request.path_params.get(self.resource_param)
        if resource_id is None:
            resource_id = request.query_params.get(self.resource_param)
        if resource_id is None:
            return None
        return ResourceRef(self.resource_type, str(resource_id))

    def __call__(
        self,
        request: Request,
        principal: Principal = Depends(get_current_principal),
        checker: PermissionChecker = Depends(get_checker),
    ) -> Principal:
        resource = self.resource_for(request)

        if self.require_all:
            has_access = checker.check_all(principal, self.permissions, resource)
        else:
            has_access = checker.check_any(principal, self.permissions, resource)

        if not has_access:
            logger.info(
                f"Forbidden {request.method} {request.url.path} for {principal}: "
                f"requires {', '.join(self.permissions)}"
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )

        return principal


def require_permission(
    *permissions: str,
    require_all: bool = False,
    resource_type: Optional[str] = None,
    resource_param: Optional[str] = None,
):
    """
    Shorthand for ``Depends(PermissionDependency(...))``.

    Usage:
        @router.delete("/users/{user_id}", dependencies=[require_permission("user.delete")])
        def delete_user(user_id: str):
            ...
    """
    return Depends(PermissionDependency(
        *permissions,
        require_all=require_all,
        resource_type=resource_type,
        resource_param=resource_param,
    ))
