"""Warden: permission evaluation engine.

Registry of dependent permissions, grant stores for roles, team capabilities
and resource shares, and a fail-closed checker over them.
"""

__version__ = "0.1.0"
