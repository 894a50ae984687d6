"""
govcore/identity/roles.py

Role and base voting power lookups.

The governance core never authenticates accounts; it only asks an identity
provider whether an account is an admin or a delegate and what its base
voting power is. StaticRoleProvider is an in-memory provider for embedding
and tests.
"""

import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Dict, Iterable, List, Optional, Set, Tuple

logger = logging.getLogger("govcore.identity")


class Role(Enum):
    """Voter role, used to pick a voting power cap."""
    USER = "user"
    ADMIN = "admin"
    DELEGATE = "delegate"


class RoleProvider(ABC):
    """Contract for the external identity/role collaborator."""

    @abstractmethod
    def is_admin(self, account: str) -> bool:
        pass

    @abstractmethod
    def is_delegate(self, account: str) -> bool:
        pass

    @abstractmethod
    def get_base_voting_power(self, account: str) -> int:
        """Voting weight before any delegation in or out."""
        pass

    @abstractmethod
    def list_accounts(self) -> List[str]:
        """Accounts eligible to vote (used to size total voting power)."""
        pass

    def get_total_voting_power(self) -> int:
        """Sum of base voting power over all eligible accounts."""
        return sum(max(0, self.get_base_voting_power(a)) for a in self.list_accounts())


# First matching role wins; anything else is a plain user.
ROLE_PRIORITY: Tuple[Tuple[Role, str], ...] = (
    (Role.ADMIN, "is_admin"),
    (Role.DELEGATE, "is_delegate"),
)


def resolve_role(provider: RoleProvider, account: str) -> Role:
    """Determine the voting role of an account."""
    for role, check in ROLE_PRIORITY:
        if getattr(provider, check)(account):
            return role
    return Role.USER


class StaticRoleProvider(RoleProvider):
    """
    In-memory identity provider.

    Usage:
        identity = StaticRoleProvider(
            balances={"alice": 1000, "bob": 500},
            admins={"alice"},
        )
        identity.set_balance("carol", 250)
    """

    def __init__(
        self,
        balances: Optional[Dict[str, int]] = None,
        admins: Optional[Iterable[str]] = None,
        delegates: Optional[Iterable[str]] = None,
    ):
        self._balances: Dict[str, int] = dict(balances or {})
        self._admins: Set[str] = set(admins or ())
        self._delegates: Set[str] = set(delegates or ())

    def is_admin(self, account: str) -> bool:
        return account in self._admins

    def is_delegate(self, account: str) -> bool:
        return account in self._delegates

    def get_base_voting_power(self, account: str) -> int:
        return self._balances.get(account, 0)

    def list_accounts(self) -> List[str]:
        return list(self._balances.keys())

    def set_balance(self, account: str, amount: int) -> None:
        self._balances[account] = amount
        logger.debug(f"Base voting power for {account} set to {amount}")

    def grant_admin(self, account: str) -> None:
        self._admins.add(account)

    def grant_delegate(self, account: str) -> None:
        self._delegates.add(account)

    def revoke_role(self, account: str) -> None:
        self._admins.discard(account)
        self._delegates.discard(account)
