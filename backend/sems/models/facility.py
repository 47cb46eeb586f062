"""
Facility (venue) model.

Only `operational` facilities can be booked or offered in availability
checks; `maintenance` and `closed` venues are kept for history.
"""

from sqlalchemy import CheckConstraint, Column, Integer, String

from sems.db.base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class Facility(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    __tablename__ = "facilities"

    name = Column(String(255), nullable=False)
    location_identifier = Column(String(255), nullable=False)
    image_url = Column(String(1000), nullable=True)
    capacity = Column(Integer, nullable=True)
    status = Column(String(20), nullable=False, default="operational", index=True)

    __table_args__ = (
        CheckConstraint("status IN ('operational', 'maintenance', 'closed')", name="check_facility_status"),
        CheckConstraint("capacity IS NULL OR capacity > 0", name="check_facility_capacity_positive"),
    )

    def __repr__(self) -> str:
        return f"<Facility(id={self.id}, name={self.name}, status={self.status})>"
