"""Permission oracle consumed by the work-order services.

Role and permission administration live outside this package; the services
only ask whether an actor holds a named permission.
"""
from typing import Iterable, Optional


APPROVE_WORK_ORDERS = "work-orders.approve"


class PermissionChecker:
    """Answers ``can(actor_id, permission)``; the base class allows everything."""

    def can(self, actor_id: Optional[int], permission: str) -> bool:
        return True


class StaticPermissionChecker(PermissionChecker):
    """Permission table held in memory, keyed by actor id."""

    def __init__(self, grants: Optional[dict[int, Iterable[str]]] = None):
        self.grants = {actor: set(perms) for actor, perms in (grants or {}).items()}

    def grant(self, actor_id: int, permission: str) -> None:
        self.grants.setdefault(actor_id, set()).add(permission)

    def can(self, actor_id: Optional[int], permission: str) -> bool:
        if actor_id is None:
            return False
        return permission in self.grants.get(actor_id, set())
