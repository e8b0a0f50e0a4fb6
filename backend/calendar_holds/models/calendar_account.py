from sqlalchemy import Column, String, Integer, Boolean, DateTime, Text, Uuid, Index, text
import uuid
from calendar_holds.core.database import Base
from calendar_holds.core.clock import utcnow


class CalendarAccount(Base):
    __tablename__ = "calendar_accounts"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_email = Column(String, nullable=False)
    calendar_email = Column(String, unique=True, nullable=False)
    calendar_type = Column(String, nullable=False, default="google")  # google, native

    # Scheduling
    is_primary = Column(Boolean, nullable=False, default=False)
    priority = Column(Integer, nullable=False, default=0)  # Higher wins ties
    is_active = Column(Boolean, nullable=False, default=True)

    # Fernet-encrypted JSON blob, never shared between accounts
    oauth_credentials = Column(Text, nullable=True)
    token_expires_at = Column(DateTime, nullable=True)

    # Push notifications
    webhook_channel_id = Column(String, nullable=True)
    webhook_resource_id = Column(String, nullable=True)
    webhook_expires_at = Column(DateTime, nullable=True)
    last_sync_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index(
            "uq_calendar_accounts_primary",
            "is_primary",
            unique=True,
            postgresql_where=text("is_primary"),
            sqlite_where=text("is_primary = 1"),
        ),
        Index("idx_calendar_accounts_active", "is_active", "priority"),
    )

    def __repr__(self):
        return f"<CalendarAccount(id={self.id}, calendar={self.calendar_email}, active={self.is_active})>"
