"""Pydantic schemas for magic link requests."""
from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class MagicLinkRequest(BaseModel):
    # Left loosely typed: malformed addresses are answered with 400, not 422.
    email: Optional[str] = None

    model_config = ConfigDict(extra="ignore")


class MagicLinkSentOut(BaseModel):
    success: bool = True
    cooldown_seconds: int = Field(alias="cooldownSeconds")

    model_config = ConfigDict(populate_by_name=True)
