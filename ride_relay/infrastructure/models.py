"""
SQLAlchemy ORM models.

Tables
------
* ``ride_records`` -- one row per tracked ride, keyed by the dispatch API's
  own ride id.  Finished rides are kept for history; the tracker only
  restores rows that are not ``FINISHED``.

Indexes
-------
* **B-Tree** on ``state`` and ``created_at`` for the restore query
  (open rides, newest first) and for trimming old rows.
"""

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    DateTime,
    Enum,
    Float,
    Index,
    Text,
    func,
)

from .database import Base
from ride_relay.domain.enums import RideState


class RideRecordModel(Base):
    __tablename__ = "ride_records"

    id = Column(BigInteger, primary_key=True, autoincrement=False)
    origin = Column(Text, nullable=False)
    destination = Column(Text, nullable=False)
    note = Column(Text, default="", nullable=False)
    declared_fare = Column(Float, nullable=True)

    state = Column(Enum(RideState), default=RideState.ACTIVE, nullable=False)
    driver_name = Column(Text, default="", nullable=False)
    vehicle_description = Column(Text, default="", nullable=False)
    plate = Column(Text, default="", nullable=False)
    stage_label = Column(Text, default="", nullable=False)
    last_status_text = Column(Text, default="", nullable=False)
    last_error = Column(Text, default="", nullable=False)
    final_fare = Column(Float, nullable=True)

    notified_acceptance = Column(Boolean, default=False, nullable=False)
    alerted = Column(Boolean, default=False, nullable=False)
    relaunched_from = Column(BigInteger, nullable=True)
    relaunched_to = Column(BigInteger, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("idx_ride_records_state", "state"),
        Index("idx_ride_records_created", "created_at"),
    )
