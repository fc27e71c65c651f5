"""
Caller identity.

Authentication and role storage are external; the engine receives an
already-authenticated Caller and trusts it.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import FrozenSet, Iterable, Optional

from .errors import AuthorizationError


class Role(Enum):
    ADMIN = "admin"
    MEMBER = "member"


@dataclass(frozen=True)
class Caller:
    """Who is performing an operation, and which accounts they own"""
    user_id: str
    role: Role = Role.MEMBER
    account_ids: FrozenSet[str] = field(default_factory=frozenset)

    @classmethod
    def admin(cls, user_id: str) -> 'Caller':
        return cls(user_id=user_id, role=Role.ADMIN)

    @classmethod
    def member(cls, user_id: str, account_ids: Optional[Iterable[str]] = None) -> 'Caller':
        return cls(user_id=user_id, role=Role.MEMBER, account_ids=frozenset(account_ids or ()))

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    def owns_account(self, account_id: str) -> bool:
        return account_id in self.account_ids

    def require_admin(self, action: str) -> None:
        if not self.is_admin:
            raise AuthorizationError(f"User {self.user_id} is not allowed to {action}")

    def require_account_access(self, account_id: str, action: str) -> None:
        """Admins act on any account; members only on their own"""
        if not self.is_admin and not self.owns_account(account_id):
            raise AuthorizationError(
                f"User {self.user_id} is not allowed to {action} on account {account_id}"
            )
