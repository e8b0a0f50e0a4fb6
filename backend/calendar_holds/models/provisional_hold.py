from sqlalchemy import Column, String, JSON, DateTime, ForeignKey, Uuid, CheckConstraint, Index, text
from sqlalchemy.orm import relationship
import enum
import uuid
from calendar_holds.core.database import Base
from calendar_holds.core.clock import utcnow


class HoldStatus(str, enum.Enum):
    ACTIVE = "active"
    CONFIRMED = "confirmed"
    EXPIRED = "expired"
    RELEASED = "released"

    @property
    def is_terminal(self) -> bool:
        return self is not HoldStatus.ACTIVE


class ProvisionalHold(Base):
    __tablename__ = "provisional_holds"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    booking_inquiry_id = Column(Uuid, nullable=False)
    calendar_account_id = Column(Uuid, ForeignKey("calendar_accounts.id"), nullable=False)
    calendar_email = Column(String, nullable=False)

    # Held interval, half-open [slot_start, slot_end)
    slot_start = Column(DateTime, nullable=False)
    slot_end = Column(DateTime, nullable=False)

    # Lifecycle
    status = Column(String, nullable=False, default=HoldStatus.ACTIVE.value)  # active, confirmed, expired, released
    created_at = Column(DateTime, nullable=False, default=utcnow)
    expires_at = Column(DateTime, nullable=False)
    released_at = Column(DateTime, nullable=True)
    confirmed_at = Column(DateTime, nullable=True)
    confirmed_event_id = Column(String, nullable=True)

    # "metadata" is reserved on declarative classes
    hold_metadata = Column("metadata", JSON, default=dict)

    calendar_account = relationship("CalendarAccount", backref="provisional_holds")

    __table_args__ = (
        CheckConstraint("slot_end > slot_start", name="ck_provisional_holds_slot_order"),
        CheckConstraint("expires_at > created_at", name="ck_provisional_holds_expiry_order"),
        CheckConstraint(
            "status IN ('active', 'confirmed', 'expired', 'released')",
            name="ck_provisional_holds_status",
        ),
        Index(
            "idx_provisional_holds_active",
            "expires_at",
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
        Index(
            "idx_provisional_holds_calendar",
            "calendar_account_id",
            "slot_start",
            "slot_end",
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
        Index("idx_provisional_holds_inquiry", "booking_inquiry_id"),
    )

    @property
    def hold_status(self) -> HoldStatus:
        return HoldStatus(self.status)

    def __repr__(self):
        return (
            f"<ProvisionalHold(id={self.id}, calendar={self.calendar_email}, "
            f"slot={self.slot_start}-{self.slot_end}, status={self.status})>"
        )
