from enum import Enum


class UserRole(str, Enum):
    CUSTOMER = "customer"
    PARTNER = "partner"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"


_ADMIN_ROLES = frozenset({UserRole.ADMIN, UserRole.SUPER_ADMIN})


def can_manage_bookings(role: UserRole) -> bool:
    return role in _ADMIN_ROLES


def can_manage_disputes(role: UserRole) -> bool:
    return role in _ADMIN_ROLES


def can_manage_payments(role: UserRole) -> bool:
    return role in _ADMIN_ROLES


def can_fulfil_bookings(role: UserRole) -> bool:
    """Partners hand over and receive games; admins may act for them."""
    return role == UserRole.PARTNER or role in _ADMIN_ROLES
