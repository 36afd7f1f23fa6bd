"""User profile models stored in the ``users`` document collection."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

RiskTolerance = Literal["low", "medium", "high"]


class UserPreferences(BaseModel):
    """Investment preferences collected at sign-up."""

    model_config = ConfigDict(populate_by_name=True)

    investment_goals: str = Field(default="", alias="investmentGoals")
    risk_tolerance: RiskTolerance = Field(default="medium", alias="riskTolerance")
    preferred_industry: str = Field(default="", alias="preferredIndustry")


class UserProfile(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    uid: str
    email: str
    display_name: str = Field(default="", alias="displayName")
    photo_url: str | None = Field(default=None, alias="photoURL")
    preferences: UserPreferences = Field(default_factory=UserPreferences)
    created_at: str | None = Field(default=None, alias="createdAt")
    updated_at: str | None = Field(default=None, alias="updatedAt")


class SessionUser(BaseModel):
    """The identity resolved from a session token."""

    uid: str
    email: str
    display_name: str = ""
