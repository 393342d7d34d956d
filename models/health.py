from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field


class Health(BaseModel):
    status: Literal["ok"] = "ok"
    timestamp: str = Field(..., description="Server time, ISO-8601 UTC")
