"""Pydantic schemas for the bot linking API."""
from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

# linked_accounts.secondary_account_id is a signed 64-bit column.
MAX_SECONDARY_ACCOUNT_ID = 2**63 - 1


class TokenIssueOut(BaseModel):
    """Freshly issued token, returned once to the owner."""

    token: str
    expires_at: datetime = Field(alias="expiresAt")
    deep_link: str = Field(alias="deepLink")

    model_config = ConfigDict(populate_by_name=True)


class LinkStatusOut(BaseModel):
    linked: bool
    secondary_account_id: Optional[int] = Field(default=None, alias="secondaryAccountId")
    live_token_expires_at: Optional[datetime] = Field(default=None, alias="liveTokenExpiresAt")

    model_config = ConfigDict(populate_by_name=True)


class LinkVerifyRequest(BaseModel):
    """Token presented by the secondary client together with its own account id."""

    token: str
    secondary_account_id: int = Field(alias="secondaryAccountId", gt=0, le=MAX_SECONDARY_ACCOUNT_ID)

    model_config = ConfigDict(populate_by_name=True, extra="forbid", str_strip_whitespace=True)


class LinkVerifyOut(BaseModel):
    status: Literal["linked", "already_linked"]
    locale: Optional[str] = None


class SecondaryUnlinkRequest(BaseModel):
    secondary_account_id: int = Field(alias="secondaryAccountId", gt=0, le=MAX_SECONDARY_ACCOUNT_ID)

    model_config = ConfigDict(populate_by_name=True, extra="forbid")


class SecondaryUnlinkOut(BaseModel):
    unlinked: bool


class SecondaryAccountOut(BaseModel):
    linked: bool
    locale: Optional[str] = None
