# policy.py
"""Capability checks for every booking, assignment and catalog operation.

Services call ``authorize(actor, action, resource)`` before touching the
store. ``resource`` is a mapping that may carry ``center_id`` (the center the
target belongs to) and ``user_id`` (the customer who owns it).
"""
from typing import Callable, Dict, Mapping, Optional

from hcs_booking.data_models import Actor, SUPERADMIN, HCS_ADMIN, DOCTOR, CUSTOMER
from hcs_booking.exceptions import AuthorizationError

Resource = Optional[Mapping]


def _superadmin(actor: Actor, resource: Resource) -> bool:
    return actor.role == SUPERADMIN


def _owns_center(actor: Actor, resource: Resource) -> bool:
    if actor.role != HCS_ADMIN or actor.center_id is None or resource is None:
        return False
    return resource.get("center_id") == actor.center_id


def _owns_booking(actor: Actor, resource: Resource) -> bool:
    if actor.role != CUSTOMER or resource is None:
        return False
    return resource.get("user_id") == actor.id


def _roles(*roles: str) -> Callable[[Actor, Resource], bool]:
    def check(actor: Actor, resource: Resource) -> bool:
        return actor.role in roles
    return check


def _any(*checks: Callable[[Actor, Resource], bool]) -> Callable[[Actor, Resource], bool]:
    def check(actor: Actor, resource: Resource) -> bool:
        return any(c(actor, resource) for c in checks)
    return check


POLICIES: Dict[str, Callable[[Actor, Resource], bool]] = {
    # Bookings
    "booking.create": _roles(CUSTOMER),
    "booking.list": _roles(SUPERADMIN, HCS_ADMIN, DOCTOR, CUSTOMER),
    "booking.view": _any(_roles(SUPERADMIN, DOCTOR), _owns_center, _owns_booking),
    "booking.confirm": _any(_superadmin, _owns_center),
    "booking.complete": _any(_superadmin, _owns_center),
    "booking.update": _any(_superadmin, _owns_center),
    "booking.cancel": _any(_superadmin, _owns_center, _owns_booking),
    # Test to center assignment
    "assignment.request": _any(_superadmin, _owns_center),
    "assignment.review": _superadmin,
    "assignment.assign": _superadmin,
    "assignment.remove": _superadmin,
    "assignment.list": _superadmin,
    # Capacity and centers
    "capacity.set": _any(_superadmin, _owns_center),
    "center.create": _superadmin,
    "center.update": _any(_superadmin, _owns_center),
    "center.delete": _superadmin,
    "center.mine": _roles(SUPERADMIN, HCS_ADMIN),
    # Test catalog
    "test.create": _roles(SUPERADMIN, HCS_ADMIN),
    "test.update": _roles(SUPERADMIN, HCS_ADMIN),
    "test.delete": _superadmin,
    "test.not_assigned": _roles(SUPERADMIN, HCS_ADMIN),
    # Users
    "user.create": _superadmin,
}


def is_allowed(actor: Actor, action: str, resource: Resource = None) -> bool:
    try:
        check = POLICIES[action]
    except KeyError:
        raise ValueError(f"Unknown action: {action}")
    return check(actor, resource)


def authorize(actor: Actor, action: str, resource: Resource = None) -> None:
    """Raise AuthorizationError unless ``actor`` may perform ``action`` on ``resource``."""
    if not is_allowed(actor, action, resource):
        raise AuthorizationError(
            f"User role {actor.role} is not authorized to perform {action}",
            {"action": action, "role": actor.role},
        )
