from sqlalchemy import Boolean, Column, Index, Integer, String

from app.core.database import Base, UTCDateTime, utc_now


class MagicLinkAttemptRecord(Base):
    """Append-only audit and rate limiting table for magic link requests."""

    __tablename__ = "magic_link_attempts"
    __table_args__ = (
        Index("ix_magic_link_attempts_email_recent", "email", "attempted_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, nullable=False)
    ip_address = Column(String, nullable=True)
    attempted_at = Column(UTCDateTime, nullable=False, default=utc_now, index=True)
    success = Column(Boolean, nullable=False, default=True)


__all__ = ["MagicLinkAttemptRecord"]
