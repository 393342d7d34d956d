# feedback.py
"""
Schemas for feedback items attached to an app.

Layered Pydantic models:
- FeedbackBase: shared domain fields (no id/timestamps)
- FeedbackCreate: payload required to file feedback
- FeedbackUpdate: partial update (PUT with COALESCE semantics)
- Feedback: read model including id, votes, status and timestamp
- VoteRequest: body of the vote endpoint

Notes:
- `author` falls back to "Anonymous" when omitted or blank.
- Votes never go below zero.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import Field, field_validator

from models.base import CamelModel

ANONYMOUS = "Anonymous"


class FeedbackType(str, Enum):
    BUG = "BUG"
    FEATURE = "FEATURE"
    IMPROVEMENT = "IMPROVEMENT"
    OTHER = "OTHER"


class FeedbackStatus(str, Enum):
    OPEN = "OPEN"
    IN_PROGRESS = "IN_PROGRESS"
    RESOLVED = "RESOLVED"


# -------------------------------
# Shared domain (no ids/dates)
# -------------------------------

class FeedbackBase(CamelModel):
    app_id: str = Field(..., min_length=1, description="App this feedback is about")
    type: FeedbackType = Field(..., description="BUG, FEATURE, IMPROVEMENT or OTHER")
    title: str = Field(..., min_length=1, max_length=255)
    description: str = Field(..., min_length=1)
    author: str = Field(ANONYMOUS, max_length=120)

    @field_validator("title", "description", mode="before")
    @classmethod
    def _strip(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator("author", mode="before")
    @classmethod
    def _default_author(cls, v):
        if v is None or (isinstance(v, str) and not v.strip()):
            return ANONYMOUS
        return v.strip() if isinstance(v, str) else v


# -------------------------------
# Create / Update payloads
# -------------------------------

class FeedbackCreate(FeedbackBase):
    """Payload required to file new feedback. Server fills the rest."""

    id: Optional[str] = Field(None, min_length=1, max_length=64)
    created_at: Optional[int] = Field(None, ge=0)
    votes: Optional[int] = Field(None, ge=0)
    status: Optional[FeedbackStatus] = None

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "appId": "0b8f3c1e-7a55-4a4e-9d4a-6c1f2e9b7d10",
                    "type": "BUG",
                    "title": "Timer resets on tab switch",
                    "description": "Switching tabs sets the countdown back to 25:00.",
                    "author": "jo",
                },
            ]
        }
    }


class FeedbackUpdate(CamelModel):
    """Partial update for feedback. Absent or null fields are preserved."""

    type: Optional[FeedbackType] = None
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = Field(None, min_length=1)
    votes: Optional[int] = Field(None, ge=0)
    status: Optional[FeedbackStatus] = None

    model_config = {
        "json_schema_extra": {
            "examples": [
                {"status": "IN_PROGRESS"},
                {"title": "Timer resets when the tab loses focus"},
            ]
        }
    }


class VoteRequest(CamelModel):
    increment: int = Field(1, description="Votes to add; negative values retract")


# -------------------------------
# Read model
# -------------------------------

class Feedback(FeedbackBase):
    id: str
    votes: int = Field(0, ge=0)
    status: FeedbackStatus = FeedbackStatus.OPEN
    created_at: int = Field(..., description="Creation timestamp (epoch ms)")
