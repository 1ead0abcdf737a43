from uuid import uuid4

from sqlalchemy import Boolean, Column, ForeignKey, Index, Integer, String, text

from app.core.database import Base, UTCDateTime, utc_now


def _new_token_id() -> str:
    return str(uuid4())


class AuthToken(Base):
    """Single-use token binding a secondary account to its owner.

    Rows are never deleted. A partial unique index keeps at most one live
    (active, unused) row per owner.
    """

    __tablename__ = "auth_tokens"
    __table_args__ = (
        Index("ix_auth_tokens_user_created", "user_id", "created_at"),
        Index(
            "uq_auth_tokens_live_owner",
            "user_id",
            unique=True,
            postgresql_where=text("is_active AND used_at IS NULL"),
            sqlite_where=text("is_active = 1 AND used_at IS NULL"),
        ),
    )

    id = Column(String(36), primary_key=True, default=_new_token_id)
    token = Column(String(32), nullable=False, unique=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at = Column(UTCDateTime, nullable=False, default=utc_now)
    expires_at = Column(UTCDateTime, nullable=False)
    used_at = Column(UTCDateTime, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    @property
    def is_live(self) -> bool:
        return bool(self.is_active) and self.used_at is None

    def __repr__(self) -> str:
        # Never render the raw token value.
        return f"<AuthToken id={self.id} user_id={self.user_id} active={self.is_active}>"


__all__ = ["AuthToken"]
