from sqlalchemy import Column, Integer, String

from app.core.database import Base, UTCDateTime, utc_now


class User(Base):
    """Primary account, identified by a verified email address."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, nullable=False, unique=True, index=True)
    created_at = Column(UTCDateTime, nullable=False, default=utc_now)


__all__ = ["User"]
