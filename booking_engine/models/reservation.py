"""Reservation model definitions."""

from datetime import datetime

from sqlalchemy import Column, Date, DateTime, Integer, String

from booking_engine.database import Base
from booking_engine.scheduling.domain import Reservation as ReservationRecord
from booking_engine.scheduling.domain import ReservationKind, ReservationStatus


class Reservation(Base):
    """A time-bound booking on the shared or per-assignee calendar."""
    __tablename__ = "reservations"

    id = Column(Integer, primary_key=True)
    title = Column(String, nullable=False)
    description = Column(String)
    subject_id = Column(Integer)
    owner_id = Column(Integer, nullable=False, index=True)
    assignee_id = Column(Integer)
    date = Column(Date, nullable=False)
    start_time = Column(String(5), nullable=False)
    end_time = Column(String(5), nullable=False)
    kind = Column(String, nullable=False)
    location = Column(String)
    status = Column(String, nullable=False, default=ReservationStatus.SCHEDULED.value)
    created_at = Column(DateTime, default=datetime.now)

    def to_record(self) -> ReservationRecord:
        return ReservationRecord(
            id=self.id,
            date=self.date,
            start_time=self.start_time,
            end_time=self.end_time,
            owner_id=self.owner_id,
            kind=ReservationKind(self.kind),
            title=self.title,
            status=ReservationStatus(self.status or ReservationStatus.SCHEDULED.value),
            subject_id=self.subject_id,
            assignee_id=self.assignee_id,
            location=self.location,
            description=self.description,
            created_at=self.created_at,
        )
