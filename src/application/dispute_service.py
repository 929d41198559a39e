import logging
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from src.domain.exceptions import (
    BookingNotFoundError,
    BookingNotOwnedError,
    DisputeNotFoundError,
    InsufficientPermissionError,
    InvalidBookingStateForDisputeError,
)
from src.domain.roles import UserRole, can_manage_disputes
from src.domain.state_machine import BookingStatus, DISPUTABLE_STATUSES
from src.infrastructure.db.models import Dispute, DisputeStatus, DisputeType
from src.infrastructure.repositories.booking_repository import BookingRepository
from src.infrastructure.repositories.dispute_repository import DisputeRepository
from src.infrastructure.repositories.outbox_repository import OutboxRepository

logger = logging.getLogger(__name__)

_CLOSING_STATUSES = {DisputeStatus.RESOLVED, DisputeStatus.CLOSED}


class DisputeService:

    def __init__(self, db: Session):
        self.db = db
        self.booking_repository = BookingRepository(db)
        self.dispute_repository = DisputeRepository(db)
        self.outbox_repository = OutboxRepository(db)

    def create_dispute(
        self,
        reporter_id: int,
        booking_id: int,
        dispute_type: DisputeType,
        title: str,
        description: str,
    ) -> Dispute:
        booking = self.booking_repository.get_for_update(booking_id)
        if not booking:
            raise BookingNotFoundError(booking_id)

        if reporter_id not in (booking.user_id, booking.partner_id):
            raise BookingNotOwnedError(booking_id)

        if booking.status not in DISPUTABLE_STATUSES:
            raise InvalidBookingStateForDisputeError(booking.status.value)

        # Marker only; the reserved unit stays where it is.
        if not self.booking_repository.transition_status(
            booking,
            DISPUTABLE_STATUSES,
            BookingStatus.DISPUTED,
        ):
            raise InvalidBookingStateForDisputeError(booking.status.value)

        dispute = self.dispute_repository.create_dispute(
            booking_id=booking_id,
            reporter_id=reporter_id,
            dispute_type=dispute_type,
            title=title,
            description=description,
        )

        self.outbox_repository.add_event(
            aggregate_type="dispute",
            aggregate_id=dispute.id,
            event_type="DISPUTE_OPENED",
            payload={
                "dispute_id": dispute.id,
                "booking_id": booking_id,
                "reporter_id": reporter_id,
                "type": dispute_type.value,
            },
            dedupe_key=f"dispute:{dispute.id}:opened",
        )
        logger.info(
            "Dispute %s opened on booking %s by user %s",
            dispute.id,
            booking_id,
            reporter_id,
        )
        return dispute

    def list_disputes(
        self,
        role: UserRole,
        status: DisputeStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Dispute]:
        if not can_manage_disputes(role):
            raise InsufficientPermissionError(role.value)
        return self.dispute_repository.list_all(status, limit, offset)

    def update_dispute(
        self,
        role: UserRole,
        dispute_id: int,
        status: DisputeStatus,
        resolver_id: int,
        resolution: str | None = None,
    ) -> Dispute:
        if not can_manage_disputes(role):
            raise InsufficientPermissionError(role.value)

        dispute = self.dispute_repository.get_by_id(dispute_id)
        if not dispute:
            raise DisputeNotFoundError(dispute_id)

        dispute.status = status
        if resolution is not None:
            dispute.resolution = resolution
        if status in _CLOSING_STATUSES:
            dispute.resolved_by = resolver_id
            dispute.resolved_at = datetime.now(timezone.utc)

        logger.info("Dispute %s moved to %s by user %s", dispute_id, status.value, resolver_id)
        return dispute
