from sqlalchemy import BigInteger, Column, ForeignKey, Integer, String

from app.core.database import Base, UTCDateTime, utc_now

DEFAULT_LOCALE = "pt-BR"


class LinkedAccount(Base):
    """Profile projection holding the binding to the secondary (bot) account.

    ``secondary_account_id`` is unique across owners; rows are never deleted,
    unlinking clears the column.
    """

    __tablename__ = "linked_accounts"

    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
        index=True,
    )
    secondary_account_id = Column(BigInteger, nullable=True, unique=True, index=True)
    preferred_locale = Column(String, nullable=False, default=DEFAULT_LOCALE)
    created_at = Column(UTCDateTime, nullable=False, default=utc_now)
    updated_at = Column(UTCDateTime, nullable=False, default=utc_now, onupdate=utc_now)


__all__ = ["DEFAULT_LOCALE", "LinkedAccount"]
