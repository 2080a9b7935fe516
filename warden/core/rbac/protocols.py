"""Permissions registered by protocol drivers.

Drivers own their permission definitions and expose them through
``register_*_permissions(registry)`` functions that the bootstrap routine
calls after the core catalogue.
"""

from .registry import PermissionRegistry, register_protocol_permission

SSH_DRIVER_ID = "ssh"


def register_ssh_permissions(registry: PermissionRegistry) -> None:
    """Register the SSH driver permissions."""
    register_protocol_permission(
        registry, SSH_DRIVER_ID, "connect",
        display_name="SSH Connect",
        description="Launch interactive SSH sessions",
        depends_on=["connection.launch"],
        metadata={"capability": "terminal"},
    )
    register_protocol_permission(
        registry, SSH_DRIVER_ID, "sftp",
        display_name="SSH File Transfer",
        description="Access remote files through SFTP",
        depends_on=["protocol:ssh.connect"],
        metadata={"capability": "file_transfer"},
    )
    register_protocol_permission(
        registry, SSH_DRIVER_ID, "port_forward",
        display_name="SSH Port Forwarding",
        description="Open local and remote port forwards through SSH sessions",
        depends_on=["protocol:ssh.connect"],
        metadata={"capability": "port_forwarding"},
    )
    register_protocol_permission(
        registry, SSH_DRIVER_ID, "share",
        display_name="SSH Session Share",
        description="Share active SSH sessions with other users",
        depends_on=["protocol:ssh.connect", "connection.share"],
        metadata={"capability": "collaboration"},
    )
    register_protocol_permission(
        registry, SSH_DRIVER_ID, "grant_write",
        display_name="SSH Grant Write Access",
        description="Delegate write control within a shared SSH session",
        depends_on=["protocol:ssh.share"],
    )
    register_protocol_permission(
        registry, SSH_DRIVER_ID, "record",
        display_name="SSH Session Recording",
        description="Record SSH terminal sessions",
        depends_on=["protocol:ssh.connect", "connection.manage"],
        metadata={"capability": "session_recording"},
    )
    register_protocol_permission(
        registry, SSH_DRIVER_ID, "manage_snippets",
        display_name="SSH Snippet Management",
        description="Manage reusable command snippets for SSH sessions",
        depends_on=["protocol:ssh.connect"],
    )
