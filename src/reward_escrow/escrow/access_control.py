"""
Role-Based Access Control for the reward escrow.

Identity is established outside the engine; this module only resolves an
authenticated address to the roles it holds and hands the result to each
operation as an explicit ``Caller`` capability:
- OWNER: merge window control, duration caps, bulk import, role admin
- ISSUER: authorized grant issuance against un-escrowed custody balance
- BRIDGE: burning entries for migration to another ledger

Every privileged engine entry point checks the capability it is given
rather than consulting ambient global state.
"""

from __future__ import annotations

import functools
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, Set

from reward_escrow.core.exceptions import UnauthorizedError
from reward_escrow.core.validation import normalize_address

logger = logging.getLogger(__name__)


class Role(Enum):
    """Standard roles for escrow access control."""
    OWNER = "owner"
    ISSUER = "issuer"
    BRIDGE = "bridge"


@dataclass(frozen=True)
class Caller:
    """
    Authenticated caller identity plus the roles it held when resolved.

    Instances are produced by ``RoleBasedAccessControl.caller`` and passed
    into every mutating escrow operation.
    """

    address: str
    roles: FrozenSet[str] = frozenset()

    def has_role(self, role: Role | str) -> bool:
        role_name = role.value if isinstance(role, Role) else role
        return role_name in self.roles

    def require_role(self, role: Role | str) -> None:
        """
        Raise unless the caller holds ``role``.

        Raises:
            UnauthorizedError: If the role is missing
        """
        role_name = role.value if isinstance(role, Role) else role
        if role_name not in self.roles:
            logger.warning(
                "Access denied: role not assigned",
                extra={
                    "event": "rbac.role_not_assigned",
                    "address": self.address[:10],
                    "required_role": role_name,
                }
            )
            raise UnauthorizedError(
                f"Unauthorized: caller {self.address[:10]} does not have role '{role_name}'",
                details={"address": self.address, "required_role": role_name},
            )


@dataclass
class RoleBasedAccessControl:
    """
    Role registry administered by the owner.

    Security:
    - Only the owner can grant/revoke roles
    - Ownership itself is held as the OWNER role
    - Audit trail of role changes
    """

    owner_address: str = ""

    # Role assignments: role -> set of addresses
    roles: Dict[str, Set[str]] = field(default_factory=dict)

    role_changes: list = field(default_factory=list)

    def __post_init__(self) -> None:
        """Initialize roles."""
        for role in Role:
            if role.value not in self.roles:
                self.roles[role.value] = set()

        if self.owner_address:
            self.owner_address = normalize_address(self.owner_address)
            self.roles[Role.OWNER.value].add(self.owner_address)

    def caller(self, address: str) -> Caller:
        """
        Resolve an authenticated address into a caller capability.

        Args:
            address: Address already authenticated by the host environment

        Returns:
            Caller carrying the roles currently assigned to the address
        """
        address_norm = normalize_address(address)
        return Caller(address=address_norm, roles=frozenset(self.get_user_roles(address_norm)))

    def grant_role(self, admin: Caller, role: Role | str, address: str) -> bool:
        """
        Grant a role to an address.

        Args:
            admin: Caller capability of the owner
            role: Role to grant
            address: Address to grant role to

        Returns:
            True if role granted

        Raises:
            UnauthorizedError: If caller is not the owner
        """
        admin.require_role(Role.OWNER)

        role_name = role.value if isinstance(role, Role) else role
        address_norm = normalize_address(address)
        self.roles.setdefault(role_name, set()).add(address_norm)

        self.role_changes.append({
            "action": "grant",
            "role": role_name,
            "address": address_norm,
            "admin": admin.address,
            "timestamp": time.time(),
        })

        logger.info(
            "Role granted",
            extra={
                "event": "rbac.role_granted",
                "role": role_name,
                "address": address_norm[:10],
                "admin": admin.address[:10],
            }
        )

        return True

    def revoke_role(self, admin: Caller, role: Role | str, address: str) -> bool:
        """
        Revoke a role from an address.

        Raises:
            UnauthorizedError: If caller is not the owner
        """
        admin.require_role(Role.OWNER)

        role_name = role.value if isinstance(role, Role) else role
        address_norm = normalize_address(address)
        if role_name in self.roles:
            self.roles[role_name].discard(address_norm)

        self.role_changes.append({
            "action": "revoke",
            "role": role_name,
            "address": address_norm,
            "admin": admin.address,
            "timestamp": time.time(),
        })

        logger.info(
            "Role revoked",
            extra={
                "event": "rbac.role_revoked",
                "role": role_name,
                "address": address_norm[:10],
                "admin": admin.address[:10],
            }
        )

        return True

    def has_role(self, role: Role | str, address: str) -> bool:
        """Check if an address has a role."""
        role_name = role.value if isinstance(role, Role) else role
        return address.strip().lower() in self.roles.get(role_name, set())

    def get_role_members(self, role: Role | str) -> Set[str]:
        """Get all addresses with a given role."""
        role_name = role.value if isinstance(role, Role) else role
        return self.roles.get(role_name, set()).copy()

    def get_user_roles(self, address: str) -> Set[str]:
        """Get all roles assigned to an address."""
        address_norm = address.strip().lower()
        return {
            role
            for role, members in self.roles.items()
            if address_norm in members
        }


def requires_role(role: Role):
    """
    Decorator to require a role on the caller capability.

    Usage:
        @requires_role(Role.OWNER)
        def start_merging_window(self, caller: Caller):
            # Only called if caller holds the owner role
            pass
    """
    def decorator(func):
        @functools.wraps(func)
        def wrapper(self, caller: Caller, *args, **kwargs):
            caller.require_role(role)
            return func(self, caller, *args, **kwargs)
        return wrapper
    return decorator
