"""Startup wiring for warden.

Registration runs in a fixed order (core catalogue first, then protocol
drivers) and ends with the validation barrier. Any registry error aborts
startup.
"""

from typing import Callable, Optional, Sequence, Tuple

from .common.logger import get_logger, setup_logger
from .core.config import Settings, get_settings
from .core.rbac.permissions import CORE_MODULE, register_permissions
from .core.rbac.protocols import SSH_DRIVER_ID, register_ssh_permissions
from .core.rbac.registry import PROTOCOL_PREFIX, PermissionRegistry, get_registry
from .db.session import get_engine, init_db

logger = get_logger("bootstrap")

Registrar = Tuple[str, Callable[[PermissionRegistry], None]]

REGISTRARS: Sequence[Registrar] = (
    (CORE_MODULE, register_permissions),
    (f"{PROTOCOL_PREFIX}{SSH_DRIVER_ID}", register_ssh_permissions),
)


def bootstrap_registry(
    registry: Optional[PermissionRegistry] = None,
    registrars: Sequence[Registrar] = REGISTRARS,
) -> PermissionRegistry:
    """
    Populate and validate a permission registry.

    Args:
        registry: Registry to populate (defaults to the global one)
        registrars: Ordered (module, register function) pairs

    Returns:
        The validated registry

    Raises:
        RegistryError: If any module registers an invalid catalogue
    """
    registry = registry if registry is not None else get_registry()

    for module, register in registrars:
        before = len(registry)
        register(registry)
        logger.info(f"Registered {len(registry) - before} permissions from {module}")

    registry.validate_dependencies()
    return registry


def bootstrap(settings: Optional[Settings] = None) -> PermissionRegistry:
    """Configure logging, build the global registry and create tables."""
    settings = settings or get_settings()

    setup_logger(
        log_dir=settings.log_dir,
        level=settings.log_level,
        file_logging=settings.file_logging,
    )
    logger.info(f"Starting {settings.app_name}")

    registry = bootstrap_registry()
    init_db(get_engine(settings.database_url))
    return registry
