# src/infrastructure/repositories/dispute_repository.py

from sqlalchemy.orm import Session
from sqlalchemy import select

from src.infrastructure.db.models import Dispute, DisputeStatus, DisputeType


class DisputeRepository:

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, dispute_id: int) -> Dispute | None:
        stmt = select(Dispute).where(Dispute.id == dispute_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def create_dispute(
        self,
        booking_id: int,
        reporter_id: int,
        dispute_type: DisputeType,
        title: str,
        description: str,
    ) -> Dispute:
        dispute = Dispute(
            booking_id=booking_id,
            reporter_id=reporter_id,
            type=dispute_type,
            title=title,
            description=description,
            status=DisputeStatus.OPEN,
        )
        self.db.add(dispute)
        self.db.flush()
        return dispute

    def list_all(
        self,
        status: DisputeStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Dispute]:
        stmt = select(Dispute)
        if status is not None:
            stmt = stmt.where(Dispute.status == status)
        stmt = stmt.order_by(Dispute.created_at.desc(), Dispute.id.desc()).limit(limit).offset(offset)
        return list(self.db.execute(stmt).scalars().all())
