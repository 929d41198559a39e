# src/domain/state_machine.py

from enum import Enum
from typing import Dict, FrozenSet, Set

from src.domain.exceptions import InvalidStateTransitionError


class BookingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    DISPUTED = "disputed"


CANCELLABLE_STATUSES: FrozenSet[BookingStatus] = frozenset(
    {
        BookingStatus.PENDING,
        BookingStatus.CONFIRMED,
    }
)

DISPUTABLE_STATUSES: FrozenSet[BookingStatus] = frozenset(
    {
        BookingStatus.CONFIRMED,
        BookingStatus.ACTIVE,
        BookingStatus.COMPLETED,
    }
)

# Bookings in these statuses block the dates they cover.
CONFLICTING_STATUSES: FrozenSet[BookingStatus] = frozenset(
    {
        BookingStatus.CONFIRMED,
        BookingStatus.ACTIVE,
    }
)


class BookingStateMachine:
    """
    Central lifecycle controller for booking transitions.
    Defines the legal state transitions.

    ``disputed`` is a side branch: it can be entered from confirmed,
    active or completed, and only an admin override moves a booking out.
    """

    _ALLOWED_TRANSITIONS: Dict[BookingStatus, Set[BookingStatus]] = {
        BookingStatus.PENDING: {
            BookingStatus.CONFIRMED,
            BookingStatus.CANCELLED,
        },
        BookingStatus.CONFIRMED: {
            BookingStatus.ACTIVE,
            BookingStatus.CANCELLED,
            BookingStatus.DISPUTED,
        },
        BookingStatus.ACTIVE: {
            BookingStatus.COMPLETED,
            BookingStatus.DISPUTED,
        },
        BookingStatus.COMPLETED: {
            BookingStatus.DISPUTED,
        },
        BookingStatus.CANCELLED: set(),
        BookingStatus.DISPUTED: set(),
    }

    _TERMINAL: FrozenSet[BookingStatus] = frozenset(
        {
            BookingStatus.COMPLETED,
            BookingStatus.CANCELLED,
        }
    )

    @classmethod
    def can_transition(
        cls,
        from_status: BookingStatus,
        to_status: BookingStatus,
    ) -> bool:
        """
        Returns True if transition is allowed.
        """
        cls._ensure_valid_status(from_status)
        cls._ensure_valid_status(to_status)

        return to_status in cls._ALLOWED_TRANSITIONS.get(from_status, set())

    @classmethod
    def validate_transition(
        cls,
        from_status: BookingStatus,
        to_status: BookingStatus,
    ) -> None:
        """
        Raises InvalidStateTransitionError if transition is illegal.
        """
        if not cls.can_transition(from_status, to_status):
            raise InvalidStateTransitionError(
                from_state=from_status.value,
                to_state=to_status.value,
            )

    @classmethod
    def is_terminal(cls, status: BookingStatus) -> bool:
        """
        Returns True if the rental lifecycle has ended.

        A completed booking can still be disputed, so terminal is not
        the same as having no outgoing transitions.
        """
        cls._ensure_valid_status(status)
        return status in cls._TERMINAL

    @classmethod
    def get_allowed_transitions(
        cls, status: BookingStatus
    ) -> Set[BookingStatus]:
        """
        Returns allowed next states from current state.
        """
        cls._ensure_valid_status(status)
        return set(cls._ALLOWED_TRANSITIONS.get(status, set()))

    @staticmethod
    def _ensure_valid_status(status: BookingStatus) -> None:
        if not isinstance(status, BookingStatus):
            raise TypeError(
                f"Expected BookingStatus, got {type(status)}"
            )
