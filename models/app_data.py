# app_data.py
"""
Schemas for application records in the App Hub.

Layered Pydantic models:
- AppDataBase: shared domain fields (no id/timestamps)
- AppDataCreate: payload required to register an app (id/createdAt optional)
- AppDataUpdate: partial update (PUT with COALESCE semantics)
- AppData: read model including id and creation timestamp

Notes:
- Wire format is camelCase; snake_case is accepted on input.
- `thumbnailUrl` and `imageUrl` are legacy twins and always resolve to the
  same value once either is set.
- `aiInsights` is an opaque JSON payload owned by the insights feature.
"""

from __future__ import annotations

from typing import Any, List, Optional

from pydantic import Field, field_validator, model_validator

from models.base import CamelModel


def _clean_tech_stack(values: Optional[List[str]]) -> Optional[List[str]]:
    if values is None:
        return None
    cleaned: List[str] = []
    for v in values:
        if v is None:
            continue
        token = str(v).strip()
        if token:
            cleaned.append(token)
    return cleaned


def _strip_text(value: Optional[str]) -> Optional[str]:
    return value.strip() if isinstance(value, str) else value


def _sync_image_fields(model):
    # one normalization step for the dual image columns
    if model.image_url is None and model.thumbnail_url is not None:
        model.image_url = model.thumbnail_url
    elif model.thumbnail_url is None and model.image_url is not None:
        model.thumbnail_url = model.image_url
    return model


# -------------------------------
# Shared domain (no ids/dates)
# -------------------------------

class AppDataBase(CamelModel):
    name: str = Field(..., min_length=1, max_length=255, description="Display name")
    description: str = Field(..., min_length=1, description="What the app does")
    tech_stack: List[str] = Field(
        ..., min_length=1, description="Technologies used, in display order"
    )
    github_url: Optional[str] = Field(None, description="Source repository URL")
    demo_url: Optional[str] = Field(None, description="Live demo URL")
    thumbnail_url: Optional[str] = Field(None, description="Legacy image field")
    image_url: Optional[str] = Field(None, description="Preview image URL")
    ai_insights: Optional[Any] = Field(None, description="Opaque AI insights payload")

    @field_validator("name", "description", mode="before")
    @classmethod
    def _strip_text_fields(cls, v):
        return _strip_text(v)

    @field_validator("tech_stack", mode="before")
    @classmethod
    def _normalize_tech_stack(cls, v):
        return _clean_tech_stack(v)

    @model_validator(mode="after")
    def _normalize_images(self):
        return _sync_image_fields(self)


# -------------------------------
# Create / Update payloads
# -------------------------------

class AppDataCreate(AppDataBase):
    """Payload required to register a new app."""

    id: Optional[str] = Field(None, min_length=1, max_length=64)
    created_at: Optional[int] = Field(None, ge=0, description="Epoch milliseconds")

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "name": "Pomodoro Buddy",
                    "description": "A tiny focus timer with streaks.",
                    "techStack": ["TypeScript", "React"],
                    "githubUrl": "https://github.com/example/pomodoro-buddy",
                    "demoUrl": "https://pomodoro.example.com",
                },
            ]
        }
    }


class AppDataUpdate(CamelModel):
    """Partial update for an app. Absent or null fields are preserved."""

    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = Field(None, min_length=1)
    tech_stack: Optional[List[str]] = Field(None, min_length=1)
    github_url: Optional[str] = None
    demo_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    image_url: Optional[str] = None
    ai_insights: Optional[Any] = None

    @field_validator("name", "description", mode="before")
    @classmethod
    def _strip_text_fields(cls, v):
        return _strip_text(v)

    @field_validator("tech_stack", mode="before")
    @classmethod
    def _normalize_tech_stack(cls, v):
        return _clean_tech_stack(v)

    model_config = {
        "json_schema_extra": {
            "examples": [
                {"description": "Now with dark mode."},
                {"techStack": ["TypeScript", "React", "Vite"]},
            ]
        }
    }


# -------------------------------
# Read model (id + timestamp)
# -------------------------------

class AppData(AppDataBase):
    id: str = Field(..., description="Unique app identifier")
    created_at: int = Field(..., description="Creation timestamp (epoch ms)")

    # Records coming back from storage are trusted; legacy rows may carry an
    # empty stack.
    tech_stack: List[str] = Field(default_factory=list)

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "id": "0b8f3c1e-7a55-4a4e-9d4a-6c1f2e9b7d10",
                    "name": "Pomodoro Buddy",
                    "description": "A tiny focus timer with streaks.",
                    "techStack": ["TypeScript", "React"],
                    "githubUrl": "https://github.com/example/pomodoro-buddy",
                    "demoUrl": None,
                    "thumbnailUrl": "https://picsum.photos/400/200?random=1700000000000",
                    "imageUrl": "https://picsum.photos/400/200?random=1700000000000",
                    "createdAt": 1700000000000,
                    "aiInsights": None,
                }
            ]
        }
    }
