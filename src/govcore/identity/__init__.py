"""
govcore/identity/

Identity and role lookups - the read-only capability checks the governance
core consumes from an external identity provider.
"""

from .roles import Role, RoleProvider, StaticRoleProvider, resolve_role, ROLE_PRIORITY

__all__ = ["Role", "RoleProvider", "StaticRoleProvider", "resolve_role", "ROLE_PRIORITY"]
