from sqlalchemy import Column, String, Integer, Boolean, DateTime, Time, Text, JSON, Uuid, CheckConstraint, UniqueConstraint, Index
import uuid
from calendar_holds.core.database import Base
from calendar_holds.core.clock import utcnow


class BlackoutPeriod(Base):
    """Manual time block that prevents bookings (vacations, lunch, etc.)."""

    __tablename__ = "blackout_periods"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_email = Column(String, nullable=False)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    is_recurring = Column(Boolean, nullable=False, default=False)
    recurrence_pattern = Column(JSON, default=dict)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("end_time > start_time", name="ck_blackout_periods_time_range"),
        Index("idx_blackout_periods_user_time", "user_email", "start_time", "end_time"),
    )

    def __repr__(self):
        return f"<BlackoutPeriod(id={self.id}, user={self.user_email}, {self.start_time}-{self.end_time})>"


class WorkingHours(Base):
    """Bookable hours for one weekday (0=Sunday ... 6=Saturday)."""

    __tablename__ = "working_hours"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_email = Column(String, nullable=False)
    day_of_week = Column(Integer, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    timezone = Column(String, nullable=False, default="America/New_York")
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("day_of_week >= 0 AND day_of_week <= 6", name="ck_working_hours_day"),
        CheckConstraint("end_time > start_time", name="ck_working_hours_range"),
        UniqueConstraint("user_email", "day_of_week", name="uq_working_hours_user_day"),
    )

    def __repr__(self):
        return f"<WorkingHours(user={self.user_email}, day={self.day_of_week}, {self.start_time}-{self.end_time})>"
