"""Role-based capability checks for privileged escrow operations.

Each privileged operation group has its own role:

- ADMIN: token registration, reconciliation, pause/unpause, role management
- TREASURY: settlement deposits and withdrawals
- DEALER: confirm, reject, reject-close, close and batch settlement

Depositor operations (funding a deal, requesting its close) need no role.
Accounts are matched case-insensitively.
"""

from __future__ import annotations

from enum import Enum

import structlog

from src.escrow.core.errors import AuthorizationError
from src.escrow.core.unit_of_work import UnitOfWork
from src.escrow.events.schemas import RoleGranted, RoleRevoked

logger = structlog.get_logger(__name__)


class Role(str, Enum):
    """Capabilities that can be granted to an account."""

    ADMIN = "admin"
    TREASURY = "treasury"
    DEALER = "dealer"


class AccessControl:
    """Role membership with journaled grants and revocations."""

    def __init__(self, uow: UnitOfWork) -> None:
        self._uow = uow
        self._members: dict[Role, set[str]] = {role: set() for role in Role}
        uow.track("roles", self._members)

    def has_role(self, role: Role, account: str) -> bool:
        return account.lower() in self._members[role]

    def require(self, role: Role, account: str) -> None:
        """Raise AuthorizationError unless ``account`` holds ``role``."""
        if not self.has_role(role, account):
            logger.warning("access.denied", role=role.value, account=account)
            raise AuthorizationError(account, role)

    def members(self, role: Role) -> list[str]:
        return sorted(self._members[role])

    def grant(self, role: Role, account: str, sender: str) -> bool:
        """Grant ``role``; returns False (and emits nothing) if already held."""
        if self.has_role(role, account):
            return False
        self._uow.remember(self._members, role)
        self._members[role].add(account.lower())
        self._uow.emit(RoleGranted(role=role.value, account=account, sender=sender))
        logger.info("access.granted", role=role.value, account=account, sender=sender)
        return True

    def revoke(self, role: Role, account: str, sender: str) -> bool:
        """Revoke ``role``; returns False (and emits nothing) if not held."""
        if not self.has_role(role, account):
            return False
        self._uow.remember(self._members, role)
        self._members[role].discard(account.lower())
        self._uow.emit(RoleRevoked(role=role.value, account=account, sender=sender))
        logger.info("access.revoked", role=role.value, account=account, sender=sender)
        return True

    def load(self, grants: dict[Role, list[str]]) -> None:
        for role, accounts in grants.items():
            self._members[role] = {a.lower() for a in accounts}
