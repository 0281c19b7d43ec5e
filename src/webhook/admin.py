"""Admin allow-list and the authorization gate for privileged actions."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator

logger = logging.getLogger(__name__)


class UnauthorizedActionError(Exception):
    """Raised when a non-admin sender attempts a privileged action."""

    def __init__(self, sender_id: str | None, action: str) -> None:
        self.sender_id = sender_id
        self.action = action
        super().__init__(f"Sender {sender_id!r} may not perform {action}")


class AdminSet:
    """Immutable set of sender ids allowed to write to storage."""

    __slots__ = ("_ids",)

    def __init__(self, sender_ids: Iterable[str] = ()) -> None:
        self._ids = frozenset(sender_ids)

    @classmethod
    def from_csv(cls, value: str) -> AdminSet:
        """Parse ``ADMIN_USER_IDS``: comma separated, blanks dropped."""
        admins = cls(part.strip() for part in value.split(",") if part.strip())
        if not admins:
            logger.warning("ADMIN_USER_IDS is empty; image uploads will be ignored")
        return admins

    def __contains__(self, sender_id: object) -> bool:
        return sender_id in self._ids

    def __len__(self) -> int:
        return len(self._ids)

    def __iter__(self) -> Iterator[str]:
        return iter(self._ids)


class AuthorizationGate:
    """Pure membership check against a preloaded ``AdminSet``."""

    def __init__(self, admins: AdminSet) -> None:
        self._admins = admins

    def is_admin(self, sender_id: str | None) -> bool:
        if sender_id is None:
            return False
        return sender_id in self._admins

    def require_admin(self, sender_id: str | None, action: str) -> None:
        if not self.is_admin(sender_id):
            raise UnauthorizedActionError(sender_id, action)
